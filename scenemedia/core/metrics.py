from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

MAPPING_MUTATIONS_TOTAL = Counter(
    "scenemedia_mapping_mutations_total",
    "Mapping write operations partitioned by operation and outcome.",
    ["operation", "outcome"],
    registry=registry,
)

UPSERT_CONFLICTS_TOTAL = Counter(
    "scenemedia_upsert_conflicts_total",
    "Unique-index conflicts absorbed by the mapping upsert.",
    registry=registry,
)

RESOLVED_SLOTS_TOTAL = Counter(
    "scenemedia_resolved_slots_total",
    "Scene asset slot resolutions by asset kind and source.",
    ["asset_type", "source"],
    registry=registry,
)

REPAIR_CHANGES_TOTAL = Counter(
    "scenemedia_repair_changes_total",
    "Rows changed by migration repair operations.",
    ["operation"],
    registry=registry,
)

REPAIR_ITEM_FAILURES_TOTAL = Counter(
    "scenemedia_repair_item_failures_total",
    "Items skipped by migration repair operations after a failure.",
    ["operation"],
    registry=registry,
)

VERIFY_DURATION = Histogram(
    "scenemedia_verify_duration_seconds",
    "Duration of a full migration verification scan.",
    registry=registry,
)

OUTSTANDING_HANDLES = Gauge(
    "scenemedia_outstanding_handles",
    "Media handles issued and not yet released.",
    registry=registry,
)


def record_mapping_mutation(operation: str, outcome: str) -> None:
    MAPPING_MUTATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()


def record_upsert_conflict() -> None:
    UPSERT_CONFLICTS_TOTAL.inc()


def record_resolved_slot(asset_type: str, source: str) -> None:
    RESOLVED_SLOTS_TOTAL.labels(asset_type=asset_type, source=source).inc()


def record_repair_changes(operation: str, count: int) -> None:
    if count:
        REPAIR_CHANGES_TOTAL.labels(operation=operation).inc(count)


def record_repair_item_failure(operation: str) -> None:
    REPAIR_ITEM_FAILURES_TOTAL.labels(operation=operation).inc()


def set_outstanding_handles(count: int) -> None:
    OUTSTANDING_HANDLES.set(count)


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
