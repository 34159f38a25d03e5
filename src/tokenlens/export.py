import json
import os
import tempfile
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path

import structlog

from tokenlens.aggregator import aggregate, aggregate_by_project
from tokenlens.buckets import Granularity
from tokenlens.derived import (
    DEFAULT_TIERS,
    EfficiencyTiers,
    cache_efficiency,
    classify_efficiency,
    dashboard_metrics,
    period_growth,
    project_overview,
)
from tokenlens.models import (
    BillingBlock,
    BucketAccumulator,
    ModelBreakdown,
    ProjectBreakdown,
    ProjectSummary,
    UsageRecord,
)
from tokenlens.normalizer import extract_list, normalize_records

logger = structlog.get_logger()

# ccusage names the key column and the document after the granularity
_BUCKET_FIELD = {
    Granularity.DAY: "date",
    Granularity.WEEK: "week",
    Granularity.MONTH: "month",
}
_DOCUMENT_KEY = {
    Granularity.DAY: "daily",
    Granularity.WEEK: "weekly",
    Granularity.MONTH: "monthly",
}


def _instant(value: "datetime | None") -> "str | None":
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def _token_fields(totals: "object") -> "dict[str, int]":
    return {
        "inputTokens": totals.input_tokens,
        "outputTokens": totals.output_tokens,
        "cacheCreationTokens": totals.cache_creation_tokens,
        "cacheReadTokens": totals.cache_read_tokens,
    }


def breakdown_to_dict(breakdown: "ModelBreakdown") -> "dict[str, object]":
    return {
        "modelName": breakdown.model,
        **_token_fields(breakdown),
        "totalTokens": breakdown.total_tokens,
        "cost": breakdown.cost,
    }


def bucket_to_dict(bucket: "BucketAccumulator") -> "dict[str, object]":
    granularity = Granularity(bucket.granularity)
    return {
        _BUCKET_FIELD[granularity]: bucket.key,
        **_token_fields(bucket),
        "totalTokens": bucket.total_tokens,
        "totalCost": bucket.cost,
        "modelsUsed": sorted(bucket.models_used),
        "modelBreakdowns": [
            breakdown_to_dict(bucket.model_breakdowns[model])
            for model in sorted(bucket.model_breakdowns)
        ],
        "records": bucket.record_count,
        "cacheEfficiency": cache_efficiency(bucket),
    }


def bucket_document(
    buckets: "Mapping[str, BucketAccumulator]",
    granularity: "Granularity | str",
) -> "dict[str, object]":
    """
    renders buckets as {"weekly": [...]} (or daily / monthly), in
    ascending key order.
    """
    granularity = Granularity(granularity)
    ordered = [buckets[key] for key in sorted(buckets)]
    return {_DOCUMENT_KEY[granularity]: [bucket_to_dict(b) for b in ordered]}


def project_to_dict(
    project: "ProjectSummary",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
) -> "dict[str, object]":
    return {
        "name": project.name,
        "totalSessions": project.total_sessions,
        "totalTokens": project.total_tokens,
        "totalCost": project.cost,
        **_token_fields(project),
        "lastActive": _instant(project.last_active),
        "models": sorted(project.models),
        "platforms": list(project.platforms),
        "averageCostPerSession": project.average_cost_per_session,
        "averageTokensPerSession": project.average_tokens_per_session,
        "efficiency": classify_efficiency(project.total_tokens, project.cost, tiers),
        "sessions": [
            {
                "sessionId": ref.session_id,
                "date": _instant(ref.date),
                "cost": ref.cost,
                "tokens": ref.tokens,
            }
            for ref in project.sessions
        ],
    }


def projects_document(
    projects: "Mapping[str, ProjectSummary]",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
) -> "dict[str, object]":
    ordered = list(projects.values())
    overview = project_overview(ordered)
    return {
        "projects": [project_to_dict(p, tiers) for p in ordered],
        "summary": {
            "totalProjects": overview.total_projects,
            "totalCost": overview.total_cost,
            "totalTokens": overview.total_tokens,
            "mostExpensiveProject": overview.most_expensive_project,
            "mostActiveProject": overview.most_active_project,
        },
    }


def project_paths_document(
    projects: "Mapping[str, ProjectBreakdown]",
) -> "dict[str, object]":
    return {
        name: {
            "path": p.path,
            "totalTokens": p.total_tokens,
            "totalCost": p.total_cost,
            "sessionCount": p.session_count,
            "sessions": [record_to_dict(r) for r in p.records],
        }
        for name, p in projects.items()
    }


def record_to_dict(record: "UsageRecord") -> "dict[str, object]":
    return {
        "timestamp": _instant(record.timestamp),
        **_token_fields(record),
        "totalTokens": record.total_tokens,
        "cost": record.cost,
        "modelsUsed": list(record.models_used),
        "projectName": record.project_key,
        "projectPath": record.project_path,
        "sessionId": record.session_id,
    }


def block_to_dict(block: "BillingBlock") -> "dict[str, object]":
    return {
        "id": block.block_id,
        "startTime": _instant(block.start_time),
        "endTime": _instant(block.end_time),
        "actualEndTime": _instant(block.actual_end_time),
        "isActive": block.is_active,
        "entries": block.entries,
        **_token_fields(block),
        "totalTokens": block.total_tokens,
        "costUSD": block.cost,
        "models": list(block.models),
        "burnRate": block.burn_rate,
        "projection": block.projection,
    }


def metrics_document(
    records: "Iterable[UsageRecord]",
    weekly: "Mapping[str, BucketAccumulator]",
    monthly: "Mapping[str, BucketAccumulator]",
    now: "datetime",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
) -> "dict[str, object]":
    metrics = dashboard_metrics(list(records), now, tiers)

    def window(usage: "object") -> "dict[str, object]":
        return {"sessions": usage.sessions, "tokens": usage.tokens, "cost": usage.cost}

    return {
        "totalSessions": metrics.total_sessions,
        "totalTokens": metrics.total_tokens,
        "totalCost": metrics.total_cost,
        "averageCostPerSession": metrics.average_cost_per_session,
        "averageTokensPerSession": metrics.average_tokens_per_session,
        "efficiency": metrics.efficiency,
        "todayUsage": window(metrics.today),
        "weeklyUsage": window(metrics.last_7_days),
        "monthlyUsage": window(metrics.last_30_days),
        "weekGrowth": period_growth([weekly[k] for k in sorted(weekly)]),
        "monthGrowth": period_growth([monthly[k] for k in sorted(monthly)]),
    }


def write_json(path: "Path", document: "object") -> "None":
    """
    writes a JSON document, replacing any existing file atomically.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        os.unlink(tmp_name)
        raise


def write_sample_files(
    out_dir: "Path",
    daily_payload: "object",
    sessions_payload: "object",
    tiers: "EfficiencyTiers" = DEFAULT_TIERS,
) -> "list[Path]":
    """
    builds sample-projects.json from a ccusage session report and
    sample-weekly.json / sample-monthly.json from a ccusage daily
    report. Returns the written paths.
    """
    daily = normalize_records(extract_list(daily_payload, "daily"))
    sessions = normalize_records(extract_list(sessions_payload, "sessions"))

    documents = {
        "sample-projects.json": projects_document(
            aggregate_by_project(sessions.records), tiers
        ),
        "sample-weekly.json": bucket_document(
            aggregate(daily.records, Granularity.WEEK), Granularity.WEEK
        ),
        "sample-monthly.json": bucket_document(
            aggregate(daily.records, Granularity.MONTH), Granularity.MONTH
        ),
    }

    written: "list[Path]" = []
    for name, document in documents.items():
        path = out_dir / name
        write_json(path, document)
        written.append(path)
        logger.info("sample_file_written", path=str(path))

    logger.info(
        "export_complete",
        daily_records=len(daily.records),
        session_records=len(sessions.records),
        skipped=daily.skipped + sessions.skipped,
    )
    return written
