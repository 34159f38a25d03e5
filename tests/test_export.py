import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tokenlens.aggregator import (
    aggregate,
    aggregate_by_project,
    aggregate_project_paths,
    reaggregate,
)
from tokenlens.buckets import Granularity
from tokenlens.export import (
    block_to_dict,
    bucket_document,
    metrics_document,
    project_paths_document,
    projects_document,
    record_to_dict,
    write_json,
    write_sample_files,
)
from tokenlens.normalizer import normalize_blocks, normalize_records


class TestBucketDocument:
    def test_weekly_shape(self, raw_daily: "list[dict]") -> "None":
        weeks = aggregate(normalize_records(raw_daily).records, Granularity.WEEK)
        document = bucket_document(weeks, Granularity.WEEK)

        assert list(document) == ["weekly"]
        assert [w["week"] for w in document["weekly"]] == ["2025-01-27", "2025-02-03"]
        first = document["weekly"][0]
        assert first["totalTokens"] == 1100
        assert first["totalCost"] == pytest.approx(1.75)
        assert first["modelsUsed"] == [
            "claude-opus-4-20250514",
            "claude-sonnet-4-20250514",
        ]
        assert [b["modelName"] for b in first["modelBreakdowns"]] == first["modelsUsed"]
        assert first["records"] == 2
        assert 0.0 <= first["cacheEfficiency"] <= 1.0

    def test_monthly_shape(self, raw_daily: "list[dict]") -> "None":
        months = aggregate(normalize_records(raw_daily).records, Granularity.MONTH)
        document = bucket_document(months, "month")
        assert [m["month"] for m in document["monthly"]] == ["2025-01-01", "2025-02-01"]

    def test_empty(self) -> "None":
        assert bucket_document({}, Granularity.DAY) == {"daily": []}

    def test_is_json_serializable(self, raw_daily: "list[dict]") -> "None":
        days = aggregate(normalize_records(raw_daily).records, Granularity.DAY)
        json.dumps(bucket_document(days, Granularity.DAY))


class TestProjectsDocument:
    def test_shape(self, raw_sessions: "list[dict]") -> "None":
        projects = aggregate_by_project(normalize_records(raw_sessions).records)
        document = projects_document(projects)

        assert [p["name"] for p in document["projects"]] == ["beta", "alpha"]
        alpha = document["projects"][1]
        assert alpha["totalSessions"] == 2
        assert alpha["averageTokensPerSession"] == 225
        assert alpha["platforms"] == ["web"]
        assert alpha["lastActive"] == "2025-03-05T00:00:00Z"
        assert alpha["sessions"][0] == {
            "sessionId": "D--working-AI-Study-alpha",
            "date": "2025-03-01T00:00:00Z",
            "cost": 0.3,
            "tokens": 150,
        }
        assert alpha["efficiency"] == "poor"
        assert document["summary"] == {
            "totalProjects": 2,
            "totalCost": pytest.approx(2.9),
            "totalTokens": 1950,
            "mostExpensiveProject": "beta",
            "mostActiveProject": "alpha",
        }

    def test_empty(self) -> "None":
        document = projects_document({})
        assert document["projects"] == []
        assert document["summary"]["mostExpensiveProject"] is None
        assert document["summary"]["totalCost"] == 0


class TestRecordDocuments:
    def test_record_to_dict(self, raw_sessions: "list[dict]") -> "None":
        record = normalize_records(raw_sessions).records[0]
        assert record_to_dict(record) == {
            "timestamp": "2025-03-01T00:00:00Z",
            "inputTokens": 100,
            "outputTokens": 50,
            "cacheCreationTokens": 0,
            "cacheReadTokens": 0,
            "totalTokens": 150,
            "cost": 0.3,
            "modelsUsed": ["claude-sonnet-4-20250514"],
            "projectName": "alpha",
            "projectPath": None,
            "sessionId": "D--working-AI-Study-alpha",
        }

    def test_project_paths_document(self) -> "None":
        result = aggregate_project_paths(
            {"/home/me/alpha": [{"date": "2025-03-03", "totalTokens": 10, "totalCost": 0.1}]}
        )
        document = project_paths_document(result.projects)
        assert document["alpha"]["path"] == "/home/me/alpha"
        assert document["alpha"]["sessionCount"] == 1
        assert document["alpha"]["sessions"][0]["projectPath"] == "/home/me/alpha"

    def test_block_to_dict(self) -> "None":
        block = normalize_blocks(
            [
                {
                    "id": "2025-03-03T10:00:00.000Z",
                    "startTime": "2025-03-03T10:00:00.000Z",
                    "endTime": "2025-03-03T15:00:00.000Z",
                    "isActive": True,
                    "entries": 3,
                    "tokenCounts": {"inputTokens": 10, "outputTokens": 20},
                    "costUSD": 0.25,
                    "models": ["claude-opus-4-20250514"],
                    "burnRate": {"tokensPerMinute": 12.5},
                }
            ]
        )[0]
        document = block_to_dict(block)
        assert document["startTime"] == "2025-03-03T10:00:00Z"
        assert document["actualEndTime"] is None
        assert document["totalTokens"] == 30
        assert document["burnRate"] == 12.5
        assert document["projection"] is None


class TestMetricsDocument:
    def test_growth_fields(self, make_record: "object") -> "None":
        records = [
            make_record("2025-02-24", total_tokens=100, cost=1.0),
            make_record("2025-03-03", total_tokens=100, cost=2.0),
        ]
        daily = aggregate(records, Granularity.DAY)
        document = metrics_document(
            records,
            reaggregate(daily.values(), Granularity.WEEK),
            reaggregate(daily.values(), Granularity.MONTH),
            datetime(2025, 3, 3, 12, tzinfo=timezone.utc),
        )
        assert document["weekGrowth"] == pytest.approx(100.0)
        assert document["monthGrowth"] == pytest.approx(100.0)
        assert document["todayUsage"] == {"sessions": 1, "tokens": 100, "cost": 2.0}
        assert document["totalSessions"] == 2

    def test_single_period_has_no_growth(self, make_record: "object") -> "None":
        records = [make_record("2025-03-03", cost=2.0)]
        weeks = aggregate(records, Granularity.WEEK)
        document = metrics_document(
            records, weeks, weeks, datetime(2025, 3, 3, tzinfo=timezone.utc)
        )
        assert document["weekGrowth"] is None
        assert document["monthGrowth"] is None


class TestWriteSampleFiles:
    def test_writes_all_documents(
        self,
        tmp_path: "Path",
        raw_daily: "list[dict]",
        raw_sessions: "list[dict]",
    ) -> "None":
        written = write_sample_files(
            tmp_path / "public",
            {"daily": raw_daily},
            {"sessions": raw_sessions},
        )

        assert sorted(p.name for p in written) == [
            "sample-monthly.json",
            "sample-projects.json",
            "sample-weekly.json",
        ]
        weekly = json.loads((tmp_path / "public" / "sample-weekly.json").read_text())
        assert len(weekly["weekly"]) == 2
        projects = json.loads((tmp_path / "public" / "sample-projects.json").read_text())
        assert projects["summary"]["totalProjects"] == 2
        monthly = json.loads((tmp_path / "public" / "sample-monthly.json").read_text())
        assert [m["month"] for m in monthly["monthly"]] == ["2025-01-01", "2025-02-01"]

    def test_bad_records_are_skipped(
        self, tmp_path: "Path", raw_sessions: "list[dict]"
    ) -> "None":
        daily = {"daily": [{"date": "garbage", "totalTokens": 1}, {"date": "2025-03-03"}]}
        write_sample_files(tmp_path, daily, {"sessions": raw_sessions})
        weekly = json.loads((tmp_path / "sample-weekly.json").read_text())
        assert [w["week"] for w in weekly["weekly"]] == ["2025-03-03"]

    def test_write_json_replaces_file(self, tmp_path: "Path") -> "None":
        path = tmp_path / "doc.json"
        write_json(path, {"a": 1})
        write_json(path, {"a": 2})
        assert json.loads(path.read_text()) == {"a": 2}
        assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]
