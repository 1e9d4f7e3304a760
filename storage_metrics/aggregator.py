"""
Fleet-wide aggregation of collection results.

aggregate_results() is a pure function of the result set: the input order
does not matter (results are sorted by resource id and sums use math.fsum),
so aggregating the same results twice yields identical reports.
"""
import math
from typing import Dict, Iterable, List, Optional, Sequence

from .constants import DEFAULT_TOP_N
from .models import (
    AggregateReport,
    CollectionResult,
    MetricOk,
    MetricSummary,
    RankedResource,
    ResourceStatus,
)


def _ok_outcomes(results: Sequence[CollectionResult], metric_name: str) -> List[tuple]:
    """(result, MetricOk) pairs for one metric, in resource-id order."""
    pairs = []
    for result in results:
        outcome = result.outcomes.get(metric_name)
        if isinstance(outcome, MetricOk):
            pairs.append((result, outcome))
    return pairs


def summarize_metric(results: Sequence[CollectionResult], metric_name: str) -> MetricSummary:
    """
    Summarize one metric over every resource whose outcome is Ok.

    max/min are taken over averages, or over totals when no contributing
    resource reports an average for this metric.
    """
    pairs = _ok_outcomes(results, metric_name)
    averages = [ok.average for _, ok in pairs if ok.average is not None]
    totals = [ok.total for _, ok in pairs if ok.total is not None]
    extrema_source = averages if averages else totals

    return MetricSummary(
        mean_of_averages=math.fsum(averages) / len(averages) if averages else None,
        sum_of_totals=math.fsum(totals) if totals else None,
        max=max(extrema_source) if extrema_source else None,
        min=min(extrema_source) if extrema_source else None,
        contributing_count=len(pairs),
    )


def rank_resources(
    results: Iterable[CollectionResult],
    metric_name: str,
    top_n: Optional[int] = DEFAULT_TOP_N
) -> List[RankedResource]:
    """
    Rank resources for one metric, highest first.

    Ranks by total, or by average when no resource reports a total for the
    metric. Resources without a value are excluded. Ties are broken by
    resource name, then resource id (ordinal comparison).
    """
    pairs = _ok_outcomes(list(results), metric_name)
    field = 'total' if any(ok.total is not None for _, ok in pairs) else 'average'

    ranked = [
        RankedResource(
            resource_id=result.resource.resource_id,
            name=result.resource.name,
            account_id=result.resource.account_id,
            value=getattr(ok, field),
        )
        for result, ok in pairs
        if getattr(ok, field) is not None
    ]
    ranked.sort(key=lambda r: (-r.value, r.name, r.resource_id))
    return ranked[:top_n] if top_n is not None else ranked


def aggregate_results(
    results: Iterable[CollectionResult],
    metric_names: Optional[Sequence[str]] = None,
    top_n: Optional[int] = DEFAULT_TOP_N
) -> AggregateReport:
    """
    Fold collection results into an AggregateReport.

    Args:
        results: Collection results in any order
        metric_names: Metrics to summarize (default: every metric seen, sorted)
        top_n: Ranking length per metric (None for no limit)
    """
    ordered = sorted(results, key=lambda r: r.resource.resource_id)

    if metric_names is None:
        names = sorted({name for r in ordered for name in r.outcomes})
    else:
        names = list(dict.fromkeys(metric_names))

    counts: Dict[ResourceStatus, int] = {status: 0 for status in ResourceStatus}
    for result in ordered:
        counts[result.status] += 1

    return AggregateReport(
        total_resources=len(ordered),
        succeeded=counts[ResourceStatus.SUCCESS],
        partially_failed=counts[ResourceStatus.PARTIAL_FAILURE],
        failed=counts[ResourceStatus.FAILURE],
        per_metric={name: summarize_metric(ordered, name) for name in names},
        top_by_metric={name: rank_resources(ordered, name, top_n) for name in names},
        failed_resources=[r.resource.resource_id for r in ordered if r.status is ResourceStatus.FAILURE],
    )
