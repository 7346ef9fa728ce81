from __future__ import annotations

from contextlib import asynccontextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

JSON_PARSE_FAILURES = Counter(
    "comic_wizard_json_parse_failures_total",
    "Number of times parsing JSON from Gemini failed, labeled by the extraction tier.",
    ["tier"],
    registry=registry,
)

GEMINI_CALL_DURATION = Histogram(
    "comic_wizard_gemini_call_duration_seconds",
    "Latency for Gemini API calls per operation.",
    ["operation"],
    registry=registry,
)

GEMINI_CALLS_TOTAL = Counter(
    "comic_wizard_gemini_calls_total",
    "Total Gemini API calls partitioned by operation and status.",
    ["operation", "status"],
    registry=registry,
)

STAGE_TRANSITIONS_TOTAL = Counter(
    "comic_wizard_stage_transitions_total",
    "Stage transitions attempted, by source stage, target stage and outcome.",
    ["from_stage", "to_stage", "outcome"],
    registry=registry,
)

ITEM_OPERATIONS_TOTAL = Counter(
    "comic_wizard_item_operations_total",
    "Per-item generation operations by item kind, operation and outcome.",
    ["kind", "operation", "outcome"],
    registry=registry,
)


def increment_json_parse_failure(tier: str) -> None:
    JSON_PARSE_FAILURES.labels(tier=tier).inc()


@asynccontextmanager
async def track_gemini_call(operation: str):
    timer = GEMINI_CALL_DURATION.labels(operation=operation).time()
    timer.__enter__()
    try:
        yield
        GEMINI_CALLS_TOTAL.labels(operation=operation, status="success").inc()
    except Exception:
        GEMINI_CALLS_TOTAL.labels(operation=operation, status="error").inc()
        raise
    finally:
        timer.__exit__(None, None, None)


def record_stage_transition(from_stage: str, to_stage: str, outcome: str) -> None:
    STAGE_TRANSITIONS_TOTAL.labels(from_stage=from_stage, to_stage=to_stage, outcome=outcome).inc()


def record_item_operation(kind: str, operation: str, outcome: str) -> None:
    ITEM_OPERATIONS_TOTAL.labels(kind=kind, operation=operation, outcome=outcome).inc()


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
