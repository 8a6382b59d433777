"""
Prometheus metrics for masking runs.
"""

from prometheus_client import Counter, Gauge, Histogram

from utils.metrics import get_or_create_metric

COLUMNS_PROCESSED = get_or_create_metric(
    lambda: Counter(
        "masking_columns_total",
        "Columns processed by masking runs",
        ["table", "status"],
    ),
    "masking_columns_total",
)

ROWS_PROCESSED = get_or_create_metric(
    lambda: Counter(
        "masking_rows_total",
        "Rows processed per column, by outcome (masked, nulled, skipped)",
        ["table", "column", "outcome"],
    ),
    "masking_rows_total",
)

BATCHES_EXECUTED = get_or_create_metric(
    lambda: Counter(
        "masking_batches_total",
        "Bulk UPDATE statements executed",
        ["table"],
    ),
    "masking_batches_total",
)

BATCH_SECONDS = get_or_create_metric(
    lambda: Histogram(
        "masking_batch_seconds",
        "Time to execute one bulk UPDATE",
        ["table"],
        buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    ),
    "masking_batch_seconds",
)

RUN_SECONDS = get_or_create_metric(
    lambda: Histogram(
        "masking_run_seconds",
        "Duration of masking runs",
        ["outcome"],
        buckets=[1, 5, 10, 30, 60, 120, 300, 600],
    ),
    "masking_run_seconds",
)

PROTECTED_ROWS = get_or_create_metric(
    lambda: Gauge(
        "masking_protected_rows",
        "Rows excluded from masking because they match a protected identity",
        ["table"],
    ),
    "masking_protected_rows",
)
