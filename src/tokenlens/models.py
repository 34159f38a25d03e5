from dataclasses import dataclass, field
from datetime import datetime

from tokenlens import derived

DEFAULT_PROJECT = "Default Project"
# ccusage does not track the platform a session ran on
DEFAULT_PLATFORM = "web"


@dataclass(frozen=True, slots=True)
class ModelUsage:
    """
    ModelUsage is the share of a single usage record attributed
    to one model.
    """

    model: "str"
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    cache_creation_tokens: "int" = 0
    cache_read_tokens: "int" = 0
    total_tokens: "int" = 0
    cost: "float" = 0.0


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord is the canonical shape of one usage data point
    reported by ccusage (a day, a session or a per-project day).
    Every numeric field is guaranteed to be present.
    """

    # always timezone-aware, in UTC
    timestamp: "datetime"
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    cache_creation_tokens: "int" = 0
    cache_read_tokens: "int" = 0
    # trusted from the source when supplied, otherwise the sum of the
    # four token kinds
    total_tokens: "int" = 0
    # trusted from the source, never recomputed from a pricing table
    cost: "float" = 0.0
    models_used: "tuple[str, ...]" = ()
    project_key: "str" = DEFAULT_PROJECT
    project_path: "str | None" = None
    session_id: "str | None" = None
    model_breakdowns: "tuple[ModelUsage, ...]" = ()


@dataclass(kw_only=True)
class TokenTotals:
    """
    running sums shared by every accumulator.
    """

    input_tokens: "int" = 0
    output_tokens: "int" = 0
    cache_creation_tokens: "int" = 0
    cache_read_tokens: "int" = 0
    total_tokens: "int" = 0
    cost: "float" = 0.0

    def _absorb(self, other: "UsageRecord | ModelUsage | TokenTotals") -> "None":
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_tokens += other.cache_creation_tokens
        self.cache_read_tokens += other.cache_read_tokens
        self.total_tokens += other.total_tokens
        self.cost += other.cost

    @property
    def token_kinds_total(self) -> "int":
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )


@dataclass(kw_only=True)
class ModelBreakdown(TokenTotals):
    model: "str"

    def add(self, usage: "ModelUsage | ModelBreakdown") -> "None":
        self._absorb(usage)


@dataclass(kw_only=True)
class BucketAccumulator(TokenTotals):
    """
    BucketAccumulator holds the sums for one bucket key (a day, a
    week start or a month start). It is created lazily by the
    aggregator and is only mutated inside the pass that created it.
    """

    key: "str"
    granularity: "str"
    models_used: "set[str]" = field(default_factory=set)
    model_breakdowns: "dict[str, ModelBreakdown]" = field(default_factory=dict)
    record_count: "int" = 0

    def add(self, record: "UsageRecord") -> "None":
        """
        folds a single usage record into the bucket.
        """
        self._absorb(record)
        self.models_used.update(record.models_used)
        for usage in record.model_breakdowns:
            self._breakdown(usage.model).add(usage)
        self.record_count += 1

    def merge(self, other: "BucketAccumulator") -> "None":
        """
        folds an already-built (finer grained) bucket into this one,
        merging model breakdowns by model identifier.
        """
        self._absorb(other)
        self.models_used |= other.models_used
        for model, breakdown in other.model_breakdowns.items():
            self._breakdown(model).add(breakdown)
        self.record_count += other.record_count

    def _breakdown(self, model: "str") -> "ModelBreakdown":
        breakdown = self.model_breakdowns.get(model)
        if breakdown is None:
            breakdown = ModelBreakdown(model=model)
            self.model_breakdowns[model] = breakdown
        return breakdown


@dataclass(frozen=True, slots=True)
class SessionRef:
    session_id: "str"
    date: "datetime"
    cost: "float"
    tokens: "int"


@dataclass(kw_only=True)
class ProjectSummary(TokenTotals):
    """
    ProjectSummary accumulates every session that belongs to one
    project key. total_sessions always equals len(sessions).
    """

    name: "str"
    total_sessions: "int" = 0
    last_active: "datetime | None" = None
    models: "set[str]" = field(default_factory=set)
    platforms: "list[str]" = field(default_factory=lambda: [DEFAULT_PLATFORM])
    sessions: "list[SessionRef]" = field(default_factory=list)

    def add(self, record: "UsageRecord") -> "None":
        self._absorb(record)
        self.total_sessions += 1
        if self.last_active is None or record.timestamp > self.last_active:
            self.last_active = record.timestamp
        self.models.update(record.models_used)
        self.sessions.append(
            SessionRef(
                session_id=record.session_id or "",
                date=record.timestamp,
                cost=record.cost,
                tokens=record.total_tokens,
            )
        )

    @property
    def total_cost(self) -> "float":
        return self.cost

    @property
    def average_cost_per_session(self) -> "float | None":
        return derived.average_cost_per_session(self.cost, self.total_sessions)

    @property
    def average_tokens_per_session(self) -> "int | None":
        return derived.average_tokens_per_session(
            self.total_tokens, self.total_sessions
        )


@dataclass(kw_only=True)
class ProjectBreakdown:
    """
    ProjectBreakdown is one entry of a per-project-path report
    (ccusage daily --instances). session_count is the number of
    entries the source reported for the path.
    """

    name: "str"
    path: "str"
    total_tokens: "int" = 0
    total_cost: "float" = 0.0
    session_count: "int" = 0
    records: "list[UsageRecord]" = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class BillingBlock:
    """
    BillingBlock is a five-hour billing window reported by ccusage.
    """

    block_id: "str"
    start_time: "datetime"
    end_time: "datetime | None"
    actual_end_time: "datetime | None"
    is_active: "bool"
    entries: "int"
    input_tokens: "int"
    output_tokens: "int"
    cache_creation_tokens: "int"
    cache_read_tokens: "int"
    total_tokens: "int"
    cost: "float"
    models: "tuple[str, ...]" = ()
    # tokens per minute, when ccusage reports one
    burn_rate: "float | None" = None
    projection: "float | None" = None
