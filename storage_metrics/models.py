"""
Data models for the storage metrics collector.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class AccountRef:
    """A resolved subscription."""
    id: str
    display_name: str = ""
    state: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class ResourceRef:
    """
    A monitorable storage account, tagged with its owning subscription.
    """
    resource_id: str
    account_id: str
    resource_group: str = ""
    name: str = ""
    location: Optional[str] = None
    kind: Optional[str] = None
    sku_name: Optional[str] = None
    sku_tier: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        return data


@dataclass(frozen=True)
class MetricSample:
    """One raw point returned by the monitoring backend."""
    timestamp: datetime
    average: Optional[float] = None
    total: Optional[float] = None
    maximum: Optional[float] = None
    minimum: Optional[float] = None
    count: Optional[float] = None


@dataclass(frozen=True)
class MetricSeries:
    """Samples for one metric of one resource over the query window."""
    metric_name: str
    unit: Optional[str] = None
    samples: List[MetricSample] = field(default_factory=list)


# =============================================================================
# Metric outcomes
# =============================================================================

@dataclass(frozen=True)
class MetricOk:
    """The metric was fetched and has a current value."""
    value: float
    unit: Optional[str]
    timestamp: datetime
    average: Optional[float] = None
    total: Optional[float] = None
    maximum: Optional[float] = None
    minimum: Optional[float] = None
    count: Optional[float] = None
    attempts: int = 1

    status = "ok"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['status'] = self.status
        data['timestamp'] = _iso(self.timestamp)
        return data


@dataclass(frozen=True)
class MetricNoData:
    """The backend returned no samples for the window."""
    attempts: int = 1

    status = "no_data"

    def to_dict(self) -> Dict:
        return {'status': self.status, 'attempts': self.attempts}


@dataclass(frozen=True)
class MetricError:
    """Every fetch attempt failed; message is the last error seen."""
    message: str
    attempts: int

    status = "error"

    def to_dict(self) -> Dict:
        return {'status': self.status, 'message': self.message, 'attempts': self.attempts}


MetricOutcome = Union[MetricOk, MetricNoData, MetricError]


class ResourceStatus(str, Enum):
    SUCCESS = "Success"
    PARTIAL_FAILURE = "PartialFailure"
    FAILURE = "Failure"


@dataclass(frozen=True)
class CollectionResult:
    """
    Outcome of collecting every requested metric for one resource.

    The outcomes key set always equals the requested metric set.
    """
    resource: ResourceRef
    outcomes: Dict[str, MetricOutcome]
    status: ResourceStatus
    error: Optional[str] = None

    @classmethod
    def from_outcomes(cls, resource: ResourceRef, outcomes: Dict[str, MetricOutcome]) -> "CollectionResult":
        has_error = any(isinstance(o, MetricError) for o in outcomes.values())
        status = ResourceStatus.PARTIAL_FAILURE if has_error else ResourceStatus.SUCCESS
        return cls(resource=resource, outcomes=outcomes, status=status)

    @classmethod
    def failure(cls, resource: ResourceRef, metric_names: List[str], error: str) -> "CollectionResult":
        """Resource-level failure: every metric carries the same error with zero attempts."""
        outcomes: Dict[str, MetricOutcome] = {
            name: MetricError(message=error, attempts=0) for name in metric_names
        }
        return cls(resource=resource, outcomes=outcomes, status=ResourceStatus.FAILURE, error=error)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'resource': self.resource.to_dict(),
            'status': self.status.value,
            'error': self.error,
            'metrics': {name: outcome.to_dict() for name, outcome in self.outcomes.items()},
        }


# =============================================================================
# Aggregation
# =============================================================================

@dataclass(frozen=True)
class MetricSummary:
    """Fleet-wide summary of one metric."""
    mean_of_averages: Optional[float] = None
    sum_of_totals: Optional[float] = None
    max: Optional[float] = None
    min: Optional[float] = None
    contributing_count: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class RankedResource:
    resource_id: str
    name: str
    account_id: str
    value: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class AggregateReport:
    """
    Fleet-wide summary of a run. Built once by the aggregator.
    """
    total_resources: int
    succeeded: int
    partially_failed: int
    failed: int
    per_metric: Dict[str, MetricSummary]
    top_by_metric: Dict[str, List[RankedResource]]
    failed_resources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            'total_resources': self.total_resources,
            'succeeded': self.succeeded,
            'partially_failed': self.partially_failed,
            'failed': self.failed,
            'per_metric': {name: s.to_dict() for name, s in self.per_metric.items()},
            'top_by_metric': {
                name: [r.to_dict() for r in ranked]
                for name, ranked in self.top_by_metric.items()
            },
            'failed_resources': list(self.failed_resources),
        }


@dataclass(frozen=True)
class FailureRecord:
    """An account or resource that was skipped because of an error."""
    scope: str  # "account" or "resource"
    identifier: str
    name: str = ""
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
