"""
Storage metrics collector shared library.
"""
from . import constants
from .aggregator import aggregate_results, rank_resources, summarize_metric
from .backends import IdentityContext, MetricsBackend, MetricsClient, ResourceDirectory
from .collector import CollectionBatch, MetricCollector, collect_all, select_current_sample, select_value
from .concurrency import CancellationToken, CollectionProgress, ProgressSnapshot, RateLimiter
from .config import RunConfig, generate_sample_config, load_config
from .discovery import discover_resources
from .errors import (
    AccountResolutionFailure,
    AuthenticationMissing,
    CollectionCancelled,
    CollectorError,
    DiscoveryFailure,
    InvalidConfiguration,
    MetricFetchFailure,
    NoAccessibleAccounts,
    ResourceAddressingFailure,
    SinkWriteFailure,
)
from .models import (
    AccountRef,
    AggregateReport,
    CollectionResult,
    FailureRecord,
    MetricError,
    MetricNoData,
    MetricOk,
    MetricSample,
    MetricSeries,
    MetricSummary,
    RankedResource,
    ResourceRef,
    ResourceStatus,
)
from .pipeline import CollectionRun, run_collection
from .sinks import ConsoleSummarySink, CsvFileSink, JsonFileSink, ResultSink, build_sinks, export_results
from .subscriptions import resolve_subscriptions
from .time_window import TimeWindow, resolve_time_window

__all__ = [
    'constants',
    # Models
    'AccountRef',
    'ResourceRef',
    'MetricSample',
    'MetricSeries',
    'MetricOk',
    'MetricNoData',
    'MetricError',
    'ResourceStatus',
    'CollectionResult',
    'MetricSummary',
    'RankedResource',
    'AggregateReport',
    'FailureRecord',
    # Errors
    'CollectorError',
    'AuthenticationMissing',
    'InvalidConfiguration',
    'AccountResolutionFailure',
    'NoAccessibleAccounts',
    'DiscoveryFailure',
    'MetricFetchFailure',
    'ResourceAddressingFailure',
    'SinkWriteFailure',
    'CollectionCancelled',
    # Collaborators
    'IdentityContext',
    'ResourceDirectory',
    'MetricsBackend',
    'MetricsClient',
    # Pipeline
    'TimeWindow',
    'resolve_time_window',
    'resolve_subscriptions',
    'discover_resources',
    'MetricCollector',
    'CollectionBatch',
    'collect_all',
    'select_current_sample',
    'select_value',
    'aggregate_results',
    'summarize_metric',
    'rank_resources',
    'CollectionRun',
    'run_collection',
    # Concurrency
    'CollectionProgress',
    'ProgressSnapshot',
    'CancellationToken',
    'RateLimiter',
    # Config
    'RunConfig',
    'load_config',
    'generate_sample_config',
    # Sinks
    'ResultSink',
    'JsonFileSink',
    'CsvFileSink',
    'ConsoleSummarySink',
    'build_sinks',
    'export_results',
]
