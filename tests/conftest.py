from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from tokenlens.models import ModelUsage, UsageRecord


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


def _make_record(
    day: "str",
    total_tokens: "int" = 0,
    cost: "float" = 0.0,
    models: "tuple[str, ...]" = (),
    **kwargs: "object",
) -> "UsageRecord":
    """
    builds a UsageRecord for a YYYY-MM-DD day; every record carries one
    breakdown per model only when it has exactly one model.
    """
    breakdowns: "tuple[ModelUsage, ...]" = ()
    if len(models) == 1:
        breakdowns = (
            ModelUsage(
                model=models[0],
                input_tokens=kwargs.get("input_tokens", 0),
                output_tokens=kwargs.get("output_tokens", 0),
                cache_creation_tokens=kwargs.get("cache_creation_tokens", 0),
                cache_read_tokens=kwargs.get("cache_read_tokens", 0),
                total_tokens=total_tokens,
                cost=cost,
            ),
        )
    return UsageRecord(
        timestamp=datetime.fromisoformat(day).replace(tzinfo=timezone.utc),
        total_tokens=total_tokens,
        cost=cost,
        models_used=models,
        model_breakdowns=breakdowns,
        **kwargs,
    )


@pytest.fixture()
def make_record() -> "object":
    return _make_record


@pytest.fixture()
def raw_daily() -> "list[dict[str, object]]":
    """
    a ccusage `daily --json` report spanning a week and a month boundary.
    """
    return [
        {
            "date": "2025-01-30",
            "inputTokens": 100,
            "outputTokens": 200,
            "cacheCreationTokens": 300,
            "cacheReadTokens": 400,
            "totalTokens": 1000,
            "totalCost": 1.25,
            "modelsUsed": ["claude-sonnet-4-20250514"],
            "modelBreakdowns": [
                {
                    "modelName": "claude-sonnet-4-20250514",
                    "inputTokens": 100,
                    "outputTokens": 200,
                    "cacheCreationTokens": 300,
                    "cacheReadTokens": 400,
                    "cost": 1.25,
                }
            ],
        },
        {
            "date": "2025-02-01",
            "inputTokens": 10,
            "outputTokens": 20,
            "cacheCreationTokens": 30,
            "cacheReadTokens": 40,
            "totalTokens": 100,
            "totalCost": 0.5,
            "modelsUsed": ["claude-opus-4-20250514", "claude-sonnet-4-20250514"],
            "modelBreakdowns": [
                {
                    "modelName": "claude-opus-4-20250514",
                    "inputTokens": 5,
                    "outputTokens": 10,
                    "cacheCreationTokens": 15,
                    "cacheReadTokens": 20,
                    "cost": 0.4,
                },
                {
                    "modelName": "claude-sonnet-4-20250514",
                    "inputTokens": 5,
                    "outputTokens": 10,
                    "cacheCreationTokens": 15,
                    "cacheReadTokens": 20,
                    "cost": 0.1,
                },
            ],
        },
        {
            "date": "2025-02-03",
            "inputTokens": 1,
            "outputTokens": 2,
            "cacheCreationTokens": 3,
            "cacheReadTokens": 4,
            "totalCost": 0.01,
            "modelsUsed": ["claude-opus-4-20250514"],
            "modelBreakdowns": [
                {
                    "modelName": "claude-opus-4-20250514",
                    "inputTokens": 1,
                    "outputTokens": 2,
                    "cacheCreationTokens": 3,
                    "cacheReadTokens": 4,
                    "cost": 0.01,
                }
            ],
        },
    ]


@pytest.fixture()
def raw_sessions() -> "list[dict[str, object]]":
    """
    a ccusage `session --json` report covering two projects.
    """
    return [
        {
            "sessionId": "D--working-AI-Study-alpha",
            "inputTokens": 100,
            "outputTokens": 50,
            "totalTokens": 150,
            "totalCost": 0.3,
            "lastActivity": "2025-03-01",
            "modelsUsed": ["claude-sonnet-4-20250514"],
        },
        {
            "sessionId": "D--working-AI-Study-beta",
            "inputTokens": 1000,
            "outputTokens": 500,
            "totalTokens": 1500,
            "totalCost": 2.0,
            "lastActivity": "2025-03-02",
            "modelsUsed": ["claude-opus-4-20250514"],
        },
        {
            "sessionId": "D--working-AI-Study-alpha",
            "inputTokens": 200,
            "outputTokens": 100,
            "totalTokens": 300,
            "totalCost": 0.6,
            "lastActivity": "2025-03-05",
            "modelsUsed": ["claude-opus-4-20250514"],
        },
    ]
