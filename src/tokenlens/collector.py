import asyncio
import time
from collections.abc import Mapping
from datetime import datetime, timezone

import structlog

from tokenlens.aggregator import (
    aggregate,
    aggregate_by_project,
    aggregate_project_paths,
    reaggregate,
)
from tokenlens.buckets import Granularity
from tokenlens.errors import InvalidInputError
from tokenlens.metrics import MetricsUpdater
from tokenlens.normalizer import extract_list, normalize_blocks, normalize_records
from tokenlens.source.base import UsageSource
from tokenlens.source.ccusage import REPORTS
from tokenlens.store import Snapshot, SnapshotStore

logger = structlog.get_logger()

# error label for failures of the aggregation pass itself
AGGREGATE_STAGE = "aggregate"


def build_snapshot(
    payloads: "Mapping[str, object]",
    now: "datetime | None" = None,
) -> "Snapshot":
    """
    runs one aggregation pass over the latest report payloads. A
    report that is missing or structurally invalid yields an empty
    section; it never fails the whole pass.
    """
    skipped = 0
    records = []
    project_paths = {}

    instances = payloads.get("daily-instances")
    if instances is not None:
        try:
            if not isinstance(instances, Mapping):
                raise InvalidInputError("daily --instances report is not an object")
            result = aggregate_project_paths(instances.get("projects"))
            project_paths = result.projects
            records = result.records
            skipped += result.skipped
        except InvalidInputError as e:
            logger.error("report_invalid", report="daily-instances", error=str(e))

    # the plain daily report is only used when there is no per-project one
    daily_payload = payloads.get("daily")
    if not records and daily_payload is not None:
        try:
            batch = normalize_records(extract_list(daily_payload, "daily"))
            records = batch.records
            skipped += batch.skipped
        except InvalidInputError as e:
            logger.error("report_invalid", report="daily", error=str(e))

    sessions = []
    session_payload = payloads.get("session")
    if session_payload is not None:
        try:
            batch = normalize_records(extract_list(session_payload, "sessions"))
            sessions = batch.records
            skipped += batch.skipped
        except InvalidInputError as e:
            logger.error("report_invalid", report="session", error=str(e))

    blocks = []
    blocks_payload = payloads.get("blocks")
    if blocks_payload is not None:
        try:
            blocks = normalize_blocks(extract_list(blocks_payload, "blocks"))
        except InvalidInputError as e:
            logger.error("report_invalid", report="blocks", error=str(e))

    daily = aggregate(records, Granularity.DAY)
    return Snapshot(
        records=records,
        daily=daily,
        weekly=reaggregate(daily.values(), Granularity.WEEK),
        monthly=reaggregate(daily.values(), Granularity.MONTH),
        projects=aggregate_by_project(sessions),
        project_paths=project_paths,
        sessions=sessions,
        blocks=blocks,
        skipped=skipped,
        updated_at=now or datetime.now(timezone.utc),
    )


class Collector:
    """
    Collector is responsible for orchestrating the periodic
    collection of ccusage reports. Each cycle fetches every report
    concurrently, runs a fresh aggregation pass and publishes the
    resulting snapshot to the store. A report that fails keeps its
    last known good payload. The loop runs until stop() is called,
    sleeping for the configured interval between cycles.
    """

    def __init__(
        self,
        source: "UsageSource",
        metrics_updater: "MetricsUpdater",
        store: "SnapshotStore",
        refresh_interval_seconds: "int" = 120,
    ) -> "None":
        self._source = source
        self._metrics = metrics_updater
        self._store = store
        self._interval = refresh_interval_seconds
        self._payloads: "dict[str, object]" = {}
        self._source_available: "bool | None" = None
        self._running: "bool" = False
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        """
        signals the collector loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def close(self) -> "None":
        await self._source.close()

    async def run(self) -> "None":
        """
        runs the main collection loop. Runs until stop() is called.
        """
        self._running = True
        try:
            while not self._stop_event.is_set():
                await self.refresh()

                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self._interval
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False

    async def refresh(self) -> "Snapshot":
        """
        runs one collection cycle and returns the snapshot that is
        current afterwards.
        """
        if self._source_available is None:
            self._source_available = await self._source.available()

        if not self._source_available:
            logger.warning("collection_skipped", reason="source unavailable")
            return self._store.latest()

        logger.info("collection_cycle_start", source=self._source.name)
        results = await asyncio.gather(
            *(self._fetch_report(report) for report in REPORTS)
        )

        had_error = False
        for report, payload in zip(REPORTS, results):
            if payload is None:
                had_error = True
                continue
            self._payloads[report] = payload

        try:
            snapshot = build_snapshot(self._payloads)
            version = self._store.publish(snapshot)
            self._metrics.update_snapshot(snapshot)
        except Exception:
            logger.exception("snapshot_build_error")
            self._metrics.inc_refresh_error(AGGREGATE_STAGE)
            return self._store.latest()

        if not had_error:
            self._metrics.set_last_refresh_success(time.time())

        logger.info(
            "collection_cycle_end",
            version=version,
            records=len(snapshot.records),
            projects=len(snapshot.projects),
            weeks=len(snapshot.weekly),
            months=len(snapshot.monthly),
            sessions=len(snapshot.sessions),
            blocks=len(snapshot.blocks),
            skipped=snapshot.skipped,
        )
        return snapshot

    async def _fetch_report(self, report: "str") -> "object | None":
        start = time.monotonic()
        try:
            return await self._source.fetch(report)
        except Exception:
            logger.exception("report_fetch_error", report=report)
            self._metrics.inc_refresh_error(report)
            return None
        finally:
            self._metrics.observe_refresh_duration(report, time.monotonic() - start)

    def status(self) -> "dict[str, object]":
        snapshot = self._store.latest()
        return {
            "isRunning": self._running,
            "ccusageInstalled": bool(self._source_available),
            "lastDataCount": len(snapshot.records),
            "projectCount": len(snapshot.projects),
            "lastUpdate": (
                snapshot.updated_at.isoformat().replace("+00:00", "Z")
                if snapshot.updated_at
                else None
            ),
            "version": self._store.version,
        }
