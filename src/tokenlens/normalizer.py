import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from tokenlens.buckets import parse_timestamp, project_key
from tokenlens.errors import (
    InvalidInputError,
    InvalidTimestampError,
    RecordValidationError,
)
from tokenlens.models import BillingBlock, ModelUsage, UsageRecord

logger = structlog.get_logger()

# ccusage uses a different timestamp field per report type
TIMESTAMP_FIELDS: "tuple[str, ...]" = (
    "timestamp",
    "date",
    "lastActivity",
    "week",
    "month",
)
COST_FIELDS: "tuple[str, ...]" = ("totalCost", "cost", "costUSD")
TOKEN_FIELDS: "tuple[str, ...]" = (
    "inputTokens",
    "outputTokens",
    "cacheCreationTokens",
    "cacheReadTokens",
)


@dataclass
class NormalizedBatch:
    """
    NormalizedBatch is the outcome of normalizing a record list:
    the valid records in input order plus one error per skipped record.
    """

    records: "list[UsageRecord]" = field(default_factory=list)
    errors: "list[RecordValidationError]" = field(default_factory=list)

    @property
    def skipped(self) -> "int":
        return len(self.errors)


def _present(raw: "Mapping[str, object]", *names: "str") -> "object | None":
    """
    returns the first of the given fields that is present and not
    null, or None when every field is absent.
    """
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def _count(value: "object | None", name: "str") -> "int":
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordValidationError(f"{name} is not a number: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise RecordValidationError(f"{name} is not finite: {value!r}")
    if value < 0:
        raise RecordValidationError(f"{name} is negative: {value!r}")
    return int(value)


def _amount(value: "object | None", name: "str") -> "float":
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordValidationError(f"{name} is not a number: {value!r}")
    try:
        amount = float(value)
    except OverflowError:
        raise RecordValidationError(f"{name} is out of range: {value!r}") from None
    if not math.isfinite(amount):
        raise RecordValidationError(f"{name} is not finite: {value!r}")
    if amount < 0:
        raise RecordValidationError(f"{name} is negative: {value!r}")
    return amount


def token_counts(raw: "Mapping[str, object]") -> "tuple[int, int, int, int, int]":
    """
    returns (input, output, cache_creation, cache_read, total) for a raw
    record. An explicit totalTokens is trusted verbatim, otherwise the
    total is the sum of the four token kinds.
    """
    kinds = [_count(raw.get(name), name) for name in TOKEN_FIELDS]
    explicit_total = raw.get("totalTokens")
    if explicit_total is not None:
        total = _count(explicit_total, "totalTokens")
    else:
        total = sum(kinds)
    return kinds[0], kinds[1], kinds[2], kinds[3], total


def record_cost(raw: "Mapping[str, object]") -> "float":
    for name in COST_FIELDS:
        value = raw.get(name)
        if value is not None:
            return _amount(value, name)
    return 0.0


def _models(raw: "Mapping[str, object]") -> "tuple[str, ...]":
    models = raw.get("modelsUsed")
    if models is None:
        model = raw.get("model")
        return (model,) if isinstance(model, str) and model else ()
    if not isinstance(models, (list, tuple)):
        raise RecordValidationError(f"modelsUsed is not a list: {models!r}")
    return tuple(m for m in models if isinstance(m, str) and m)


def _model_breakdowns(
    raw: "Mapping[str, object]",
    models: "tuple[str, ...]",
    counts: "tuple[int, int, int, int, int]",
    cost: "float",
) -> "tuple[ModelUsage, ...]":
    breakdowns = raw.get("modelBreakdowns")
    if breakdowns is None:
        # a single-model record can be attributed in full; a multi-model
        # record without a breakdown cannot be split
        if len(models) != 1:
            return ()
        return (
            ModelUsage(
                model=models[0],
                input_tokens=counts[0],
                output_tokens=counts[1],
                cache_creation_tokens=counts[2],
                cache_read_tokens=counts[3],
                total_tokens=counts[4],
                cost=cost,
            ),
        )

    if not isinstance(breakdowns, (list, tuple)):
        raise RecordValidationError(f"modelBreakdowns is not a list: {breakdowns!r}")

    usages: "list[ModelUsage]" = []
    for entry in breakdowns:
        if not isinstance(entry, Mapping):
            raise RecordValidationError(f"model breakdown is not a mapping: {entry!r}")
        model = _present(entry, "modelName", "model")
        if not isinstance(model, str) or not model:
            raise RecordValidationError("model breakdown has no model name")
        inp, out, cc, cr, total = token_counts(entry)
        usages.append(
            ModelUsage(
                model=model,
                input_tokens=inp,
                output_tokens=out,
                cache_creation_tokens=cc,
                cache_read_tokens=cr,
                total_tokens=total,
                cost=record_cost(entry),
            )
        )
    return tuple(usages)


def normalize_record(raw: "object") -> "UsageRecord":
    """
    converts one raw ccusage record into a UsageRecord. Absent
    counts default to zero; an absent or unparseable timestamp raises
    RecordValidationError.
    """
    if not isinstance(raw, Mapping):
        raise RecordValidationError(f"record is not a mapping: {type(raw).__name__}")

    ts_value = _present(raw, *TIMESTAMP_FIELDS)
    if ts_value is None:
        raise RecordValidationError("record has no timestamp")
    try:
        timestamp = parse_timestamp(ts_value)
    except InvalidTimestampError as e:
        raise RecordValidationError(str(e)) from e

    counts = token_counts(raw)
    cost = record_cost(raw)
    models = _models(raw)
    project_path = raw.get("projectPath")
    session_id = raw.get("sessionId")

    return UsageRecord(
        timestamp=timestamp,
        input_tokens=counts[0],
        output_tokens=counts[1],
        cache_creation_tokens=counts[2],
        cache_read_tokens=counts[3],
        total_tokens=counts[4],
        cost=cost,
        models_used=models,
        project_key=project_key(raw),
        project_path=project_path if isinstance(project_path, str) else None,
        session_id=session_id if isinstance(session_id, str) else None,
        model_breakdowns=_model_breakdowns(raw, models, counts, cost),
    )


def normalize_records(raws: "object") -> "NormalizedBatch":
    """
    normalizes a list of raw records, skipping (and logging) every
    record that fails validation. Raises InvalidInputError when the
    container itself is not a list.
    """
    if not isinstance(raws, Sequence) or isinstance(raws, (str, bytes)):
        raise InvalidInputError(f"expected a list of records, got {type(raws).__name__}")

    batch = NormalizedBatch()
    for index, raw in enumerate(raws):
        try:
            batch.records.append(normalize_record(raw))
        except RecordValidationError as e:
            e.index = index
            batch.errors.append(e)
            logger.warning("record_skipped", index=index, reason=e.reason)
    return batch


def extract_list(payload: "object", key: "str") -> "list[object]":
    """
    pulls the record list out of a ccusage JSON document, e.g.
    {"daily": [...]} or {"sessions": [...]}.
    """
    if not isinstance(payload, Mapping):
        raise InvalidInputError(f"expected a JSON object, got {type(payload).__name__}")
    records = payload.get(key)
    if not isinstance(records, list):
        raise InvalidInputError(f"{key!r} is missing or not a list")
    return records


def _optional_timestamp(value: "object") -> "datetime | None":
    return parse_timestamp(value) if value is not None else None


def _rate(value: "object", key: "str") -> "float | None":
    # newer ccusage releases report burn rate and projection as objects
    if isinstance(value, Mapping):
        value = value.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        rate = float(value)
    except OverflowError:
        return None
    return rate if math.isfinite(rate) else None


def normalize_block(raw: "object") -> "BillingBlock":
    if not isinstance(raw, Mapping):
        raise RecordValidationError(f"block is not a mapping: {type(raw).__name__}")

    try:
        start_time = parse_timestamp(raw.get("startTime"))
        end_time = _optional_timestamp(raw.get("endTime"))
        actual_end_time = _optional_timestamp(raw.get("actualEndTime"))
    except InvalidTimestampError as e:
        raise RecordValidationError(str(e)) from e

    token_counts_raw = raw.get("tokenCounts") or {}
    if not isinstance(token_counts_raw, Mapping):
        raise RecordValidationError("tokenCounts is not a mapping")
    inp = _count(token_counts_raw.get("inputTokens"), "inputTokens")
    out = _count(token_counts_raw.get("outputTokens"), "outputTokens")
    cc = _count(
        token_counts_raw.get("cacheCreationInputTokens"), "cacheCreationInputTokens"
    )
    cr = _count(token_counts_raw.get("cacheReadInputTokens"), "cacheReadInputTokens")
    total = raw.get("totalTokens")

    models = raw.get("models")
    if not isinstance(models, list):
        models = []
    return BillingBlock(
        block_id=str(raw.get("id") or start_time.isoformat()),
        start_time=start_time,
        end_time=end_time,
        actual_end_time=actual_end_time,
        is_active=bool(raw.get("isActive")),
        entries=_count(raw.get("entries"), "entries"),
        input_tokens=inp,
        output_tokens=out,
        cache_creation_tokens=cc,
        cache_read_tokens=cr,
        total_tokens=_count(total, "totalTokens") if total is not None else inp + out + cc + cr,
        cost=_amount(raw.get("costUSD"), "costUSD"),
        models=tuple(m for m in models if isinstance(m, str)),
        burn_rate=_rate(raw.get("burnRate"), "tokensPerMinute"),
        projection=_rate(raw.get("projection"), "totalCost"),
    )


def normalize_blocks(raws: "object") -> "list[BillingBlock]":
    """
    normalizes ccusage billing blocks, dropping gap blocks and
    skipping malformed ones.
    """
    if not isinstance(raws, Sequence) or isinstance(raws, (str, bytes)):
        raise InvalidInputError(f"expected a list of blocks, got {type(raws).__name__}")

    blocks: "list[BillingBlock]" = []
    for index, raw in enumerate(raws):
        if isinstance(raw, Mapping) and raw.get("isGap"):
            continue
        try:
            blocks.append(normalize_block(raw))
        except RecordValidationError as e:
            logger.warning("block_skipped", index=index, reason=e.reason)
    return blocks
