"""
Constants for the storage metrics collector.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""
from datetime import timedelta

# =============================================================================
# Time Window Tokens
# =============================================================================

# Symbolic query range -> lookback duration
TIME_RANGES = {
    '1h': timedelta(hours=1),
    '6h': timedelta(hours=6),
    '12h': timedelta(hours=12),
    '1d': timedelta(days=1),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
}

# Symbolic granularity -> sampling interval
GRANULARITIES = {
    '1m': timedelta(minutes=1),
    '5m': timedelta(minutes=5),
    '15m': timedelta(minutes=15),
    '1h': timedelta(hours=1),
    '1d': timedelta(days=1),
}

# Granularity -> ISO 8601 duration accepted by Azure Monitor
GRANULARITY_ISO8601 = {
    '1m': 'PT1M',
    '5m': 'PT5M',
    '15m': 'PT15M',
    '1h': 'PT1H',
    '1d': 'P1D',
}

# =============================================================================
# Storage Account Metrics (Microsoft.Storage/storageAccounts)
# =============================================================================

METRIC_TRANSACTIONS = "Transactions"
METRIC_AVAILABILITY = "Availability"
METRIC_USED_CAPACITY = "UsedCapacity"
METRIC_E2E_LATENCY = "SuccessE2ELatency"
METRIC_SERVER_LATENCY = "SuccessServerLatency"
METRIC_INGRESS = "Ingress"
METRIC_EGRESS = "Egress"

DEFAULT_METRICS = [
    METRIC_TRANSACTIONS,
    METRIC_AVAILABILITY,
    METRIC_USED_CAPACITY,
    METRIC_E2E_LATENCY,
    METRIC_SERVER_LATENCY,
]

SUPPORTED_METRICS = DEFAULT_METRICS + [METRIC_INGRESS, METRIC_EGRESS]

# Units reported when the backend omits one
METRIC_UNITS = {
    METRIC_TRANSACTIONS: "Count",
    METRIC_AVAILABILITY: "Percent",
    METRIC_USED_CAPACITY: "Bytes",
    METRIC_E2E_LATENCY: "MilliSeconds",
    METRIC_SERVER_LATENCY: "MilliSeconds",
    METRIC_INGRESS: "Bytes",
    METRIC_EGRESS: "Bytes",
}

# Aggregations requested per metric; Azure Monitor rejects unsupported ones
METRIC_AGGREGATIONS = {
    METRIC_TRANSACTIONS: "Total",
    METRIC_AVAILABILITY: "Average,Minimum,Maximum",
    METRIC_USED_CAPACITY: "Average",
    METRIC_E2E_LATENCY: "Average,Minimum,Maximum",
    METRIC_SERVER_LATENCY: "Average,Minimum,Maximum",
    METRIC_INGRESS: "Total",
    METRIC_EGRESS: "Total",
}
DEFAULT_AGGREGATION = "Average,Total,Maximum,Minimum,Count"

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_TIME_RANGE = '1d'
DEFAULT_GRANULARITY = '1h'
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 2.0  # seconds, fixed between attempts
DEFAULT_CONCURRENCY = 8  # monitoring APIs throttle aggressively
DEFAULT_TOP_N = 10
DEFAULT_RATE_LIMIT = 10.0  # metric calls per second across all workers
DEFAULT_RATE_BURST = 20

# =============================================================================
# Providers
# =============================================================================

PROVIDER_AZURE = "azure"
SUBSCRIPTION_STATE_ENABLED = "Enabled"

# =============================================================================
# Output
# =============================================================================

OUTPUT_FORMATS = ('json', 'csv', 'console')
DEFAULT_OUTPUT_FORMATS = ['json', 'csv', 'console']
FILE_PREFIX = "sma_storage"
