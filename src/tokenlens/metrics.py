from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from tokenlens.store import Snapshot


def create_usage_metrics(
    registry: "CollectorRegistry" = REGISTRY,
) -> "dict[str, Gauge]":
    """
    creates the gauge families describing the latest snapshot.
     - project_tokens: total tokens per project.
     - project_cost_usd: total cost per project.
     - buckets: number of buckets per granularity.
     - records: number of usage records in the snapshot.
    They are gauges rather than counters since every pass recomputes
    the aggregates from scratch.
    """
    return {
        "project_tokens": Gauge(
            "tokenlens_project_tokens",
            "Total tokens used per project",
            ["project"],
            registry=registry,
        ),
        "project_cost_usd": Gauge(
            "tokenlens_project_cost_usd",
            "Total cost in USD per project",
            ["project"],
            registry=registry,
        ),
        "buckets": Gauge(
            "tokenlens_buckets",
            "Number of aggregate buckets per granularity",
            ["granularity"],
            registry=registry,
        ),
        "records": Gauge(
            "tokenlens_records",
            "Number of usage records in the latest snapshot",
            registry=registry,
        ),
    }


class MetricsUpdater:
    """
    applies refresh outcomes and snapshot totals to Prometheus metrics.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._usage: "dict[str, Gauge]" = create_usage_metrics(registry)
        self._refresh_duration: "Histogram" = Histogram(
            "tokenlens_refresh_duration_seconds",
            "Duration of ccusage report fetches",
            ["report"],
            registry=registry,
        )
        self._refresh_errors: "Counter" = Counter(
            "tokenlens_refresh_errors_total",
            "Total number of failed report fetches",
            ["report"],
            registry=registry,
        )
        self._last_refresh_success: "Gauge" = Gauge(
            "tokenlens_last_refresh_success_timestamp_seconds",
            "Unix timestamp of the last refresh without errors",
            registry=registry,
        )
        self._records_skipped: "Gauge" = Gauge(
            "tokenlens_records_skipped",
            "Number of malformed records skipped by the latest aggregation pass",
            registry=registry,
        )

    def update_snapshot(self, snapshot: "Snapshot") -> "None":
        """
        replaces the usage gauges with the snapshot's totals.
        """
        # clear first so projects that vanished from the source go away
        self._usage["project_tokens"].clear()
        self._usage["project_cost_usd"].clear()
        for name, project in snapshot.projects.items():
            self._usage["project_tokens"].labels(project=name).set(project.total_tokens)
            self._usage["project_cost_usd"].labels(project=name).set(project.cost)

        buckets = self._usage["buckets"]
        buckets.labels(granularity="day").set(len(snapshot.daily))
        buckets.labels(granularity="week").set(len(snapshot.weekly))
        buckets.labels(granularity="month").set(len(snapshot.monthly))
        self._usage["records"].set(len(snapshot.records))

        self._records_skipped.set(snapshot.skipped)

    def observe_refresh_duration(self, report: "str", duration_seconds: "float") -> "None":
        self._refresh_duration.labels(report=report).observe(duration_seconds)

    def inc_refresh_error(self, report: "str") -> "None":
        self._refresh_errors.labels(report=report).inc()

    def set_last_refresh_success(self, timestamp: "float") -> "None":
        self._last_refresh_success.set(timestamp)
