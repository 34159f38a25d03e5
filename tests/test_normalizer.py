import json
from datetime import datetime, timezone

import pytest

from tokenlens.errors import InvalidInputError, RecordValidationError
from tokenlens.normalizer import (
    extract_list,
    normalize_blocks,
    normalize_record,
    normalize_records,
)


class TestNormalizeRecord:
    def test_missing_counts_default_to_zero(self) -> "None":
        record = normalize_record({"date": "2025-03-03"})
        assert record.input_tokens == 0
        assert record.output_tokens == 0
        assert record.cache_creation_tokens == 0
        assert record.cache_read_tokens == 0
        assert record.total_tokens == 0
        assert record.cost == 0.0
        assert record.models_used == ()
        assert record.model_breakdowns == ()
        assert record.project_key == "Default Project"

    def test_total_is_sum_when_absent(self) -> "None":
        record = normalize_record(
            {
                "date": "2025-03-03",
                "inputTokens": 1,
                "outputTokens": 2,
                "cacheCreationTokens": 3,
                "cacheReadTokens": 4,
            }
        )
        assert record.total_tokens == 10

    def test_explicit_total_is_trusted(self) -> "None":
        record = normalize_record(
            {"date": "2025-03-03", "inputTokens": 1, "totalTokens": 999}
        )
        assert record.total_tokens == 999

    def test_null_total_falls_back_to_sum(self) -> "None":
        record = normalize_record(
            {"date": "2025-03-03", "inputTokens": 5, "totalTokens": None}
        )
        assert record.total_tokens == 5

    def test_cost_is_trusted_verbatim(self) -> "None":
        record = normalize_record(
            {"date": "2025-03-03", "inputTokens": 1_000_000, "totalCost": 0.01}
        )
        assert record.cost == 0.01

    def test_cost_field_variants(self) -> "None":
        assert normalize_record({"date": "2025-03-03", "cost": 1.5}).cost == 1.5
        assert normalize_record({"date": "2025-03-03", "costUSD": 2.5}).cost == 2.5

    def test_timestamp_field_variants(self) -> "None":
        expected = datetime(2025, 3, 3, tzinfo=timezone.utc)
        assert normalize_record({"timestamp": "2025-03-03T00:00:00Z"}).timestamp == expected
        assert normalize_record({"lastActivity": "2025-03-03"}).timestamp == expected
        assert normalize_record({"week": "2025-03-03"}).timestamp == expected

    def test_single_model_record_is_attributed_in_full(self) -> "None":
        record = normalize_record(
            {
                "date": "2025-03-03",
                "inputTokens": 10,
                "outputTokens": 20,
                "totalCost": 0.5,
                "model": "A",
            }
        )
        assert record.models_used == ("A",)
        assert len(record.model_breakdowns) == 1
        usage = record.model_breakdowns[0]
        assert usage.model == "A"
        assert usage.input_tokens == 10
        assert usage.output_tokens == 20
        assert usage.total_tokens == 30
        assert usage.cost == 0.5

    def test_multi_model_record_without_breakdown_is_not_split(self) -> "None":
        record = normalize_record(
            {"date": "2025-03-03", "inputTokens": 10, "modelsUsed": ["A", "B"]}
        )
        assert record.models_used == ("A", "B")
        assert record.model_breakdowns == ()

    def test_model_breakdowns_are_normalized(self, raw_daily: "list[dict]") -> "None":
        record = normalize_record(raw_daily[1])
        assert [u.model for u in record.model_breakdowns] == [
            "claude-opus-4-20250514",
            "claude-sonnet-4-20250514",
        ]
        assert record.model_breakdowns[0].total_tokens == 50
        assert record.model_breakdowns[0].cost == 0.4

    def test_project_and_session_are_kept(self) -> "None":
        record = normalize_record(
            {
                "date": "2025-03-03",
                "projectPath": "/workspace/foo/bar-baz",
                "sessionId": "abc",
            }
        )
        assert record.project_key == "bar-baz"
        assert record.project_path == "/workspace/foo/bar-baz"
        assert record.session_id == "abc"

    def test_unparseable_timestamp(self) -> "None":
        with pytest.raises(RecordValidationError):
            normalize_record({"date": "yesterday"})

    def test_missing_timestamp(self) -> "None":
        with pytest.raises(RecordValidationError):
            normalize_record({"inputTokens": 1})

    @pytest.mark.parametrize(
        "value", ["12", -1, True, float("nan"), float("inf"), float("-inf")]
    )
    def test_invalid_counts(self, value: "object") -> "None":
        with pytest.raises(RecordValidationError):
            normalize_record({"date": "2025-03-03", "inputTokens": value})

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), 10**400])
    def test_invalid_costs(self, value: "object") -> "None":
        with pytest.raises(RecordValidationError):
            normalize_record({"date": "2025-03-03", "totalCost": value})

    def test_non_finite_total_is_rejected(self) -> "None":
        with pytest.raises(RecordValidationError):
            normalize_record({"date": "2025-03-03", "totalTokens": float("inf")})

    def test_not_a_mapping(self) -> "None":
        with pytest.raises(RecordValidationError):
            normalize_record(["2025-03-03"])


class TestNormalizeRecords:
    def test_skips_bad_records_and_continues(self) -> "None":
        batch = normalize_records(
            [
                {"date": "2025-03-03", "totalTokens": 1},
                {"date": "garbage", "totalTokens": 2},
                "not a record",
                {"date": "2025-03-04", "totalTokens": 3},
            ]
        )
        assert [r.total_tokens for r in batch.records] == [1, 3]
        assert batch.skipped == 2
        assert [e.index for e in batch.errors] == [1, 2]

    def test_non_finite_json_values_are_skipped(self) -> "None":
        raws = json.loads(
            "["
            '{"date": "2025-01-01", "inputTokens": NaN},'
            '{"date": "2025-01-01", "totalTokens": Infinity},'
            '{"date": "2025-01-01", "totalCost": NaN},'
            '{"date": "2025-01-02", "totalTokens": 5}'
            "]"
        )
        batch = normalize_records(raws)
        assert [r.total_tokens for r in batch.records] == [5]
        assert batch.skipped == 3

    def test_out_of_range_timestamp_is_skipped(self) -> "None":
        batch = normalize_records(
            [
                {"timestamp": "0001-01-01T00:00:00+05:00"},
                {"date": "2025-01-02", "totalTokens": 5},
            ]
        )
        assert [r.total_tokens for r in batch.records] == [5]
        assert batch.skipped == 1

    def test_empty_list(self) -> "None":
        batch = normalize_records([])
        assert batch.records == []
        assert batch.skipped == 0

    @pytest.mark.parametrize("container", [None, {"daily": []}, "records", 42])
    def test_invalid_container_is_a_hard_failure(self, container: "object") -> "None":
        with pytest.raises(InvalidInputError):
            normalize_records(container)


class TestExtractList:
    def test_extracts_named_list(self) -> "None":
        assert extract_list({"daily": [1, 2]}, "daily") == [1, 2]

    def test_missing_key(self) -> "None":
        with pytest.raises(InvalidInputError):
            extract_list({"weekly": []}, "daily")

    def test_payload_not_a_mapping(self) -> "None":
        with pytest.raises(InvalidInputError):
            extract_list([], "daily")


class TestNormalizeBlocks:
    def test_drops_gaps_and_skips_malformed(self) -> "None":
        blocks = normalize_blocks(
            [
                {
                    "id": "2025-03-03T10:00:00.000Z",
                    "startTime": "2025-03-03T10:00:00.000Z",
                    "endTime": "2025-03-03T15:00:00.000Z",
                    "actualEndTime": "2025-03-03T12:10:00.000Z",
                    "isActive": False,
                    "isGap": False,
                    "entries": 12,
                    "tokenCounts": {
                        "inputTokens": 10,
                        "outputTokens": 20,
                        "cacheCreationInputTokens": 30,
                        "cacheReadInputTokens": 40,
                    },
                    "totalTokens": 100,
                    "costUSD": 0.75,
                    "models": ["claude-sonnet-4-20250514"],
                    "burnRate": {"tokensPerMinute": 12.5, "costPerHour": 0.2},
                    "projection": None,
                },
                {
                    "id": "gap-1",
                    "startTime": "2025-03-03T15:00:00.000Z",
                    "isGap": True,
                },
                {"id": "bad", "startTime": "not a time"},
            ]
        )
        assert len(blocks) == 1
        block = blocks[0]
        assert block.block_id == "2025-03-03T10:00:00.000Z"
        assert block.entries == 12
        assert block.cache_read_tokens == 40
        assert block.total_tokens == 100
        assert block.cost == 0.75
        assert block.burn_rate == 12.5
        assert block.projection is None
        assert block.is_active is False
