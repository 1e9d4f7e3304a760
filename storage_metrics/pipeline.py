"""
End-to-end collection run.

resolve window -> resolve subscriptions -> discover storage accounts ->
collect metrics (worker pool) -> aggregate.

Errors before discovery (bad configuration, no credential, no accessible
subscriptions) are raised. Errors from discovery onwards end the run early
but are returned on the CollectionRun together with everything collected so
far, so partial results can still be exported.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .aggregator import aggregate_results
from .backends import IdentityContext, MetricsBackend, ResourceDirectory
from .collector import MetricCollector, collect_all
from .concurrency import CancellationToken, CollectionProgress, RateLimiter
from .config import RunConfig
from .constants import PROVIDER_AZURE
from .discovery import discover_resources
from .errors import CollectionCancelled, CollectorError
from .models import (
    AccountRef,
    AggregateReport,
    CollectionResult,
    FailureRecord,
    ResourceRef,
)
from .subscriptions import resolve_subscriptions
from .time_window import TimeWindow, resolve_time_window
from .utils import generate_run_id, get_timestamp

logger = logging.getLogger(__name__)


@dataclass
class CollectionRun:
    """
    Everything a run produced. Sinks consume this; they never recompute
    aggregates.
    """
    run_id: str
    timestamp: str
    config: RunConfig
    window: TimeWindow
    accounts: List[AccountRef] = field(default_factory=list)
    resources: List[ResourceRef] = field(default_factory=list)
    results: List[CollectionResult] = field(default_factory=list)
    report: Optional[AggregateReport] = None
    failures: List[FailureRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancelled: bool = False
    error: Optional[CollectorError] = None

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def state(self) -> str:
        if self.aborted:
            return "aborted"
        if self.cancelled:
            return "cancelled"
        return "completed"

    def header(self) -> Dict[str, Any]:
        """Fields shared by every output document."""
        return {
            'run_id': self.run_id,
            'timestamp': self.timestamp,
            'provider': PROVIDER_AZURE,
            'state': self.state,
            'error': str(self.error) if self.error else None,
            'window': self.window.to_dict(),
            'metrics': list(self.config.metrics),
            'subscriptions': [a.id for a in self.accounts],
        }

    def results_document(self) -> Dict[str, Any]:
        return {
            **self.header(),
            'resource_count': len(self.resources),
            'collected_count': len(self.results),
            'results': [r.to_dict() for r in self.results],
        }

    def summary_document(self) -> Dict[str, Any]:
        return {
            **self.header(),
            'report': self.report.to_dict() if self.report else None,
            'failures': [f.to_dict() for f in self.failures],
            'warnings': list(self.warnings),
        }


def run_collection(
    config: RunConfig,
    identity: IdentityContext,
    directory: ResourceDirectory,
    backend: MetricsBackend,
    progress: Optional[CollectionProgress] = None,
    cancel_token: Optional[CancellationToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
    now: Optional[Callable[[], datetime]] = None
) -> CollectionRun:
    """
    Run the full collection pipeline.

    Args:
        config: Run options (validated here)
        identity: Authenticated session used to resolve subscriptions
        directory: Lists storage accounts per subscription
        backend: Azure Monitor (or fake) metrics backend
        progress: Shared progress counters (created if omitted)
        cancel_token: Cancellation signal (created from config.deadline_seconds if omitted)
        sleep: Delay function between retry attempts (tests)
        now: Clock for the query window end (tests)

    Raises:
        InvalidConfiguration: Bad options; raised before any backend call
        AuthenticationMissing: Credential rejected while resolving subscriptions
        NoAccessibleAccounts: No subscription left to scan
    """
    config.validate()
    window = resolve_time_window(config.time_range, config.granularity, now=now)
    progress = progress or CollectionProgress()
    cancel_token = cancel_token or CancellationToken(deadline_seconds=config.deadline_seconds)

    run = CollectionRun(
        run_id=generate_run_id(),
        timestamp=get_timestamp(),
        config=config,
        window=window,
    )
    logger.info(
        f"Run {run.run_id}: window {window.start.isoformat()} -> {window.end.isoformat()} "
        f"({config.time_range} @ {config.granularity}), metrics: {', '.join(config.metrics)}"
    )

    accounts, resolution_warnings = resolve_subscriptions(identity, config.account_ids)
    run.accounts = accounts
    run.warnings.extend(str(w) for w in resolution_warnings)

    try:
        run.resources = discover_resources(
            directory,
            accounts,
            continue_on_error=config.continue_on_error,
            progress=progress,
            cancel_token=cancel_token,
            regions=config.regions,
        )
    except CollectionCancelled:
        run.cancelled = True
    except CollectorError as e:
        logger.error(f"Discovery aborted: {e}")
        run.error = e

    if run.resources and not run.aborted and not run.cancelled:
        collector = MetricCollector(
            backend,
            window,
            config.metrics,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            progress=progress,
            cancel_token=cancel_token,
            rate_limiter=RateLimiter(config.rate_limit, config.rate_burst) if config.rate_limit > 0 else None,
            sleep=sleep,
        )
        batch = collect_all(
            collector,
            run.resources,
            concurrency=config.concurrency,
            continue_on_error=config.continue_on_error,
        )
        run.results = batch.results
        run.cancelled = batch.cancelled and batch.error is None
        run.error = batch.error

    run.report = aggregate_results(run.results, config.metrics, top_n=config.top_n)
    run.failures = list(progress.snapshot().failures)

    report = run.report
    logger.info(
        f"Run {run.run_id} {run.state}: {report.total_resources} of {len(run.resources)} resources collected "
        f"({report.succeeded} succeeded, {report.partially_failed} partial, {report.failed} failed)"
    )
    return run
