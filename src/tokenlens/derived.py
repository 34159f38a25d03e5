"""
derived metrics over completed aggregates.

Every function here is pure and never mutates its input. Ratios that
are undefined (division by a zero count, no previous period, zero
cost) are reported as None; NaN and infinities are never returned.
"""

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from tokenlens.models import (
        BucketAccumulator,
        ProjectSummary,
        TokenTotals,
        UsageRecord,
    )

T = TypeVar("T")


def round_half_up(value: "float") -> "int":
    return math.floor(value + 0.5)


def average_cost_per_session(total_cost: "float", sessions: "int") -> "float | None":
    if sessions <= 0:
        return None
    return total_cost / sessions


def average_tokens_per_session(total_tokens: "int", sessions: "int") -> "int | None":
    if sessions <= 0:
        return None
    return round_half_up(total_tokens / sessions)


def percentage_of_total(part: "float", whole: "float") -> "float":
    if whole == 0:
        return 0.0
    return part / whole * 100


def cache_efficiency(totals: "TokenTotals") -> "float":
    """
    share of the bucket's tokens that went through the prompt cache,
    clamped to [0, 1]. 0 for an empty bucket.
    """
    if totals.total_tokens <= 0:
        return 0.0
    ratio = (totals.cache_creation_tokens + totals.cache_read_tokens) / totals.total_tokens
    return min(1.0, max(0.0, ratio))


def cache_hit_rate(totals: "TokenTotals") -> "float":
    cache_tokens = totals.cache_creation_tokens + totals.cache_read_tokens
    if cache_tokens <= 0:
        return 0.0
    return totals.cache_read_tokens / cache_tokens


def cost_per_million_tokens(totals: "TokenTotals") -> "float | None":
    if totals.total_tokens <= 0:
        return None
    return totals.cost / (totals.total_tokens / 1_000_000)


def tokens_per_cost(tokens: "int", cost: "float") -> "float | None":
    if cost <= 0:
        return None
    return tokens / cost


def growth(current: "float", previous: "float | None") -> "float | None":
    """
    period-over-period growth in percent. None when there is no
    previous period or the previous value is zero.
    """
    if previous is None or previous == 0:
        return None
    return (current - previous) / previous * 100


def period_growth(buckets: "Sequence[BucketAccumulator]") -> "float | None":
    """
    cost growth of the last bucket relative to the one before it.
    Buckets are expected in ascending key order.
    """
    if len(buckets) < 2:
        return None
    return growth(buckets[-1].cost, buckets[-2].cost)


@dataclass(frozen=True)
class EfficiencyTiers:
    """
    EfficiencyTiers holds the tokens-per-currency-unit thresholds used
    to classify usage, highest tier first.
    """

    excellent: "float" = 400_000
    good: "float" = 200_000
    fair: "float" = 100_000

    def ordered(self) -> "list[tuple[str, float]]":
        return [
            ("excellent", self.excellent),
            ("good", self.good),
            ("fair", self.fair),
        ]


DEFAULT_TIERS = EfficiencyTiers()


def classify_efficiency(
    tokens: "int",
    cost: "float",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
) -> "str | None":
    """
    classifies usage into excellent / good / fair / poor by tokens per
    currency unit. None when the cost is zero.
    """
    ratio = tokens_per_cost(tokens, cost)
    if ratio is None:
        return None
    for name, threshold in tiers.ordered():
        if ratio >= threshold:
            return name
    return "poor"


def _first_max(items: "Iterable[T]", key: "Callable[[T], float]") -> "T | None":
    # single pass, first seen wins on ties
    best: "T | None" = None
    best_value = 0.0
    for item in items:
        value = key(item)
        if best is None or value > best_value:
            best, best_value = item, value
    return best


def most_expensive(items: "Iterable[T]") -> "T | None":
    return _first_max(items, lambda item: item.cost)


def most_active(items: "Iterable[ProjectSummary]") -> "ProjectSummary | None":
    return _first_max(items, lambda item: item.total_sessions)


@dataclass(frozen=True)
class ProjectOverview:
    total_projects: "int"
    total_cost: "float"
    total_tokens: "int"
    most_expensive_project: "str | None"
    most_active_project: "str | None"


def project_overview(projects: "Sequence[ProjectSummary]") -> "ProjectOverview":
    expensive = most_expensive(projects)
    active = most_active(projects)
    return ProjectOverview(
        total_projects=len(projects),
        total_cost=sum(p.cost for p in projects),
        total_tokens=sum(p.total_tokens for p in projects),
        most_expensive_project=expensive.name if expensive else None,
        most_active_project=active.name if active else None,
    )


@dataclass(frozen=True)
class WindowUsage:
    sessions: "int" = 0
    tokens: "int" = 0
    cost: "float" = 0.0


def usage_window(records: "Iterable[UsageRecord]", since: "datetime") -> "WindowUsage":
    """
    sums the records whose timestamp is at or after `since`.
    """
    sessions = tokens = 0
    cost = 0.0
    for record in records:
        if record.timestamp >= since:
            sessions += 1
            tokens += record.total_tokens
            cost += record.cost
    return WindowUsage(sessions=sessions, tokens=tokens, cost=cost)


@dataclass(frozen=True)
class DashboardMetrics:
    total_sessions: "int"
    total_tokens: "int"
    total_cost: "float"
    average_cost_per_session: "float | None"
    average_tokens_per_session: "int | None"
    efficiency: "str | None"
    today: "WindowUsage" = field(default_factory=WindowUsage)
    last_7_days: "WindowUsage" = field(default_factory=WindowUsage)
    last_30_days: "WindowUsage" = field(default_factory=WindowUsage)


def dashboard_metrics(
    records: "Sequence[UsageRecord]",
    now: "datetime",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
) -> "DashboardMetrics":
    """
    computes the headline numbers of the dashboard: overall totals and
    today / last 7 days / last 30 days windows relative to `now`
    (an aware datetime).
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    total_tokens = sum(r.total_tokens for r in records)
    total_cost = sum(r.cost for r in records)
    return DashboardMetrics(
        total_sessions=len(records),
        total_tokens=total_tokens,
        total_cost=total_cost,
        average_cost_per_session=average_cost_per_session(total_cost, len(records)),
        average_tokens_per_session=average_tokens_per_session(
            total_tokens, len(records)
        ),
        efficiency=classify_efficiency(total_tokens, total_cost, tiers),
        today=usage_window(records, today),
        last_7_days=usage_window(records, today - timedelta(days=7)),
        last_30_days=usage_window(records, today - timedelta(days=30)),
    )
