"""
folds normalized usage records into calendar buckets and projects.

Each call starts from an empty mapping and returns a new one; nothing
is shared between passes. Accumulation is sums and set unions only,
so the fold order does not change the result.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import structlog

from tokenlens.buckets import Granularity, bucket_key, project_name_from_path
from tokenlens.errors import InvalidInputError, RecordValidationError
from tokenlens.models import (
    DEFAULT_PROJECT,
    BucketAccumulator,
    ProjectBreakdown,
    ProjectSummary,
    UsageRecord,
)
from tokenlens.normalizer import normalize_record, record_cost, token_counts

logger = structlog.get_logger()


def _sorted_by_key(
    buckets: "dict[str, BucketAccumulator]",
) -> "dict[str, BucketAccumulator]":
    # YYYY-MM-DD keys sort chronologically
    return {key: buckets[key] for key in sorted(buckets)}


def aggregate(
    records: "Iterable[UsageRecord]",
    granularity: "Granularity | str",
) -> "dict[str, BucketAccumulator]":
    """
    groups records by their day, week (ISO Monday) or month bucket.
    Returns buckets in ascending key order.
    """
    granularity = Granularity(granularity)
    buckets: "dict[str, BucketAccumulator]" = {}

    for record in records:
        key = bucket_key(record.timestamp, granularity)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = BucketAccumulator(key=key, granularity=granularity.value)
            buckets[key] = bucket
        bucket.add(record)

    return _sorted_by_key(buckets)


def reaggregate(
    buckets: "Iterable[BucketAccumulator]",
    granularity: "Granularity | str",
) -> "dict[str, BucketAccumulator]":
    """
    rolls already-built buckets up into a coarser granularity, using
    each bucket's key as its representative timestamp. Only day
    buckets can be re-bucketed; week and month buckets may only be
    re-aggregated at their own granularity since weeks straddle months.
    """
    target = Granularity(granularity)
    merged: "dict[str, BucketAccumulator]" = {}

    for source in buckets:
        if source.granularity not in (Granularity.DAY.value, target.value):
            raise InvalidInputError(
                f"cannot re-aggregate {source.granularity} buckets by {target.value}"
            )
        key = bucket_key(source.key, target)
        bucket = merged.get(key)
        if bucket is None:
            bucket = BucketAccumulator(key=key, granularity=target.value)
            merged[key] = bucket
        bucket.merge(source)

    return _sorted_by_key(merged)


def aggregate_by_project(
    records: "Iterable[UsageRecord]",
) -> "dict[str, ProjectSummary]":
    """
    groups session records by project key. Projects are returned most
    expensive first; ties keep the order in which projects were first
    seen.
    """
    projects: "dict[str, ProjectSummary]" = {}

    for record in records:
        project = projects.get(record.project_key)
        if project is None:
            project = ProjectSummary(name=record.project_key)
            projects[record.project_key] = project
        project.add(record)

    # sorted() is stable, which keeps first-seen order on ties
    ordered = sorted(projects.values(), key=lambda p: p.cost, reverse=True)
    return {p.name: p for p in ordered}


@dataclass
class ProjectPathsResult:
    """
    ProjectPathsResult holds the per-path breakdowns of a grouped
    report together with every valid entry flattened into one list.
    """

    projects: "dict[str, ProjectBreakdown]" = field(default_factory=dict)
    records: "list[UsageRecord]" = field(default_factory=list)
    skipped: "int" = 0


def aggregate_project_paths(projects: "object") -> "ProjectPathsResult":
    """
    summarizes a mapping of project path -> daily entries (ccusage
    daily --instances). Session counts cover every entry of the path
    and totals every entry with valid counts and cost; entries without
    a valid timestamp are left out of the flattened record list.
    """
    if not isinstance(projects, Mapping):
        raise InvalidInputError(
            f"expected a mapping of project paths, got {type(projects).__name__}"
        )

    breakdowns: "dict[str, ProjectBreakdown]" = {}
    records: "list[UsageRecord]" = []
    skipped = 0

    for path, entries in projects.items():
        if not isinstance(entries, list):
            logger.warning("project_entries_invalid", path=path)
            continue

        name = project_name_from_path(path) or DEFAULT_PROJECT
        breakdown = breakdowns.get(name)
        if breakdown is None:
            breakdown = ProjectBreakdown(name=name, path=str(path))
            breakdowns[name] = breakdown

        breakdown.session_count += len(entries)
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                skipped += 1
                logger.warning("record_skipped", path=path, index=index, reason="not a mapping")
                continue

            tagged = {**entry, "projectPath": path, "projectName": name}
            try:
                tokens = token_counts(tagged)[4]
                cost = record_cost(tagged)
            except RecordValidationError as e:
                skipped += 1
                logger.warning("record_skipped", path=path, index=index, reason=e.reason)
                continue

            breakdown.total_tokens += tokens
            breakdown.total_cost += cost
            try:
                record = normalize_record(tagged)
            except RecordValidationError as e:
                skipped += 1
                logger.warning("record_skipped", path=path, index=index, reason=e.reason)
                continue

            breakdown.records.append(record)
            records.append(record)

    return ProjectPathsResult(breakdowns, records, skipped)
