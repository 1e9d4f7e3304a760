"""
Per-resource metric collection.

MetricCollector fetches every requested metric for one storage account with a
bounded, fixed-delay retry per metric (tenacity). collect_all() fans resources
out over a thread pool and joins the results back in discovery order.

Failure isolation:
- A metric that fails every attempt becomes a MetricError outcome; sibling
  metrics and other resources are unaffected.
- A resource whose subscription context cannot be established becomes a
  Failure result; whether that stops the run is decided by collect_all().
"""
import logging
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .backends import MetricsBackend, MetricsClient
from .concurrency import CancellationToken, CollectionProgress, RateLimiter
from .constants import DEFAULT_CONCURRENCY, DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, METRIC_UNITS
from .errors import (
    AuthenticationMissing,
    CollectionCancelled,
    CollectorError,
    MetricFetchFailure,
    ResourceAddressingFailure,
    check_and_raise_auth_error,
)
from .models import (
    CollectionResult,
    FailureRecord,
    MetricError,
    MetricNoData,
    MetricOk,
    MetricOutcome,
    MetricSample,
    MetricSeries,
    ResourceRef,
    ResourceStatus,
)
from .time_window import TimeWindow

logger = logging.getLogger(__name__)

# Errors that end a fetch immediately instead of being retried
_NON_RETRYABLE = (CollectionCancelled, AuthenticationMissing)


def select_current_sample(samples: Sequence[MetricSample]) -> Optional[MetricSample]:
    """Most recent sample carrying a selectable value."""
    populated = [s for s in samples if select_value(s) is not None]
    if not populated:
        return None
    return max(populated, key=lambda s: s.timestamp)


def select_value(sample: MetricSample) -> Optional[float]:
    """Current value by field priority: average, total, maximum, count."""
    for value in (sample.average, sample.total, sample.maximum, sample.count):
        if value is not None:
            return value
    return None


def series_to_outcome(series: MetricSeries, attempts: int = 1) -> MetricOutcome:
    """Convert fetched samples into an Ok or NoData outcome."""
    sample = select_current_sample(series.samples)
    if sample is None:
        return MetricNoData(attempts=attempts)

    return MetricOk(
        value=select_value(sample),
        unit=series.unit or METRIC_UNITS.get(series.metric_name),
        timestamp=sample.timestamp,
        average=sample.average,
        total=sample.total,
        maximum=sample.maximum,
        minimum=sample.minimum,
        count=sample.count,
        attempts=attempts,
    )


class MetricCollector:
    """
    Collects the requested metrics for one resource at a time.

    Safe to share between worker threads: the only mutable state it touches
    is the CollectionProgress, RateLimiter and CancellationToken, all of
    which are thread-safe.

    Args:
        backend: MetricsBackend used to address subscriptions and fetch samples
        window: Resolved query window
        metric_names: Requested metrics (fixed for the run)
        max_retries: Retries after the first failed attempt (total attempts = max_retries + 1)
        retry_delay: Fixed delay in seconds between attempts
        progress: Shared progress counters
        cancel_token: Run-scoped cancellation signal
        rate_limiter: Optional token bucket shared by all workers
        sleep: Delay function used between attempts (default waits on cancel_token)
    """

    def __init__(
        self,
        backend: MetricsBackend,
        window: TimeWindow,
        metric_names: Sequence[str],
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        progress: Optional[CollectionProgress] = None,
        cancel_token: Optional[CancellationToken] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.backend = backend
        self.window = window
        self.metric_names = list(metric_names)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.progress = progress or CollectionProgress()
        self.cancel_token = cancel_token or CancellationToken()
        self.rate_limiter = rate_limiter
        self._sleep_fn = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _sleep(self, seconds: float) -> None:
        if self._sleep_fn is not None:
            self._sleep_fn(seconds)
            self.cancel_token.raise_if_cancelled()
        elif self.cancel_token.wait(seconds):
            raise CollectionCancelled(self.cancel_token.reason or "Run cancelled")

    def _log_retry(self, resource: ResourceRef, metric_name: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Retry {retry_state.attempt_number}/{self.max_retries} for {metric_name} "
                f"on {resource.name} after {self.retry_delay}s due to: {exc}"
            )
        return before_sleep

    def fetch_with_retry(
        self,
        client: MetricsClient,
        resource: ResourceRef,
        metric_name: str
    ) -> Tuple[MetricSeries, int]:
        """
        Fetch one metric, retrying transient errors.

        Returns:
            (series, attempts) from the first successful attempt

        Raises:
            MetricFetchFailure: All max_retries + 1 attempts failed
            CollectionCancelled: The run was cancelled before or between attempts
        """
        attempts = 0
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_not_exception_type(_NON_RETRYABLE),
            sleep=self._sleep,
            before_sleep=self._log_retry(resource, metric_name),
            reraise=True,
        )
        try:
            for attempt in retryer:
                self.cancel_token.raise_if_cancelled()
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if self.rate_limiter is not None:
                        self.rate_limiter.acquire(self.cancel_token)
                    series = client.fetch(resource.resource_id, metric_name, self.window)
        except _NON_RETRYABLE:
            raise
        except Exception as e:
            raise MetricFetchFailure(
                resource.resource_id, metric_name, attempts,
                str(e) or type(e).__name__, original_error=e
            ) from e
        return series, attempts

    def collect_metric(self, client: MetricsClient, resource: ResourceRef, metric_name: str) -> MetricOutcome:
        """Fetch one metric and fold any failure into its outcome."""
        try:
            series, attempts = self.fetch_with_retry(client, resource, metric_name)
        except MetricFetchFailure as e:
            logger.warning(
                f"Failed to collect {metric_name} for {resource.name} after {e.attempts} attempt(s): {e}"
            )
            return MetricError(message=str(e), attempts=e.attempts)

        outcome = series_to_outcome(series, attempts)
        if isinstance(outcome, MetricNoData):
            logger.debug(f"No data for {metric_name} on {resource.name}")
        return outcome

    def address(self, resource: ResourceRef) -> MetricsClient:
        """
        Establish the subscription context for a resource.

        Raises:
            ResourceAddressingFailure: The context could not be established
            AuthenticationMissing: The credential was rejected
        """
        try:
            return self.backend.client_for(resource.account_id)
        except Exception as e:
            check_and_raise_auth_error(e, f"address resource {resource.name}")
            raise ResourceAddressingFailure(
                resource.resource_id,
                f"Cannot address {resource.name} in subscription {resource.account_id}: {e}",
                original_error=e
            ) from e

    def collect(self, resource: ResourceRef) -> CollectionResult:
        """
        Collect every requested metric for one resource.

        Raises:
            CollectionCancelled: The run was cancelled mid-resource; nothing is recorded
            AuthenticationMissing: The credential was rejected while addressing
        """
        self.cancel_token.raise_if_cancelled()

        try:
            client = self.address(resource)
        except ResourceAddressingFailure as e:
            logger.warning(str(e))
            result = CollectionResult.failure(resource, self.metric_names, str(e))
            self.progress.record_failure(FailureRecord(
                scope="resource", identifier=resource.resource_id, name=resource.name, error=str(e)
            ))
            self.progress.increment_processed(failed=True)
            return result

        outcomes: Dict[str, MetricOutcome] = {}
        for metric_name in self.metric_names:
            outcomes[metric_name] = self.collect_metric(client, resource, metric_name)

        result = CollectionResult.from_outcomes(resource, outcomes)
        self.progress.increment_processed()
        logger.debug(f"Collected {len(outcomes)} metrics for {resource.name}: {result.status.value}")
        return result


@dataclass
class CollectionBatch:
    """Results of collect_all(), in discovery order."""
    results: List[CollectionResult] = field(default_factory=list)
    cancelled: bool = False
    error: Optional[CollectorError] = None


def collect_all(
    collector: MetricCollector,
    resources: Sequence[ResourceRef],
    concurrency: int = DEFAULT_CONCURRENCY,
    continue_on_error: bool = True
) -> CollectionBatch:
    """
    Collect metrics for every resource on a bounded worker pool.

    Completed results are always kept. With continue_on_error False, the
    worker that hits the first resource-level failure cancels the run before
    returning, so no later resource is started; the failure is returned as
    batch.error. Authentication errors always cancel the run.
    """
    cancel_token = collector.cancel_token
    completed: Dict[int, CollectionResult] = {}
    batch = CollectionBatch()

    def run_one(index: int, resource: ResourceRef) -> Tuple[int, CollectionResult]:
        cancel_token.raise_if_cancelled()
        try:
            result = collector.collect(resource)
        except CollectionCancelled:
            raise
        except CollectorError as e:
            cancel_token.cancel(str(e))
            raise
        except Exception as e:
            logger.warning(f"Task for {resource.name} failed: {e}")
            result = CollectionResult.failure(resource, collector.metric_names, str(e))
            collector.progress.record_failure(FailureRecord(
                scope="resource", identifier=resource.resource_id, name=resource.name, error=str(e)
            ))
            collector.progress.increment_processed(failed=True)

        if result.status is ResourceStatus.FAILURE and not continue_on_error:
            cancel_token.cancel(f"Aborted after failure on {resource.name}")
        return index, result

    workers = max(int(concurrency), 1)
    logger.info(f"Collecting {len(collector.metric_names)} metric(s) for {len(resources)} resource(s) with {workers} worker(s)")

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="metrics-worker") as executor:
        futures = {
            executor.submit(run_one, index, resource): (index, resource)
            for index, resource in enumerate(resources)
        }

        def abort(error: CollectorError) -> None:
            if batch.error is None:
                batch.error = error
            cancel_token.cancel(str(error))
            for pending in futures:
                pending.cancel()

        for future in as_completed(futures):
            index, resource = futures[future]
            try:
                _, result = future.result()
            except (CollectionCancelled, CancelledError):
                # Only resources dropped by cancellation mark the batch cancelled
                batch.cancelled = True
                continue
            except CollectorError as e:
                logger.error(f"Aborting collection: {e}")
                abort(e)
                continue

            completed[index] = result
            if result.status is ResourceStatus.FAILURE and not continue_on_error:
                logger.error(f"Aborting collection after failure on {resource.name}: {result.error}")
                abort(ResourceAddressingFailure(resource.resource_id, result.error or "Resource failure"))

    batch.results = [completed[i] for i in sorted(completed)]
    if batch.cancelled and batch.error is None:
        logger.warning(f"Collection cancelled: {cancel_token.reason}")
    return batch
