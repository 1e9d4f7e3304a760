"""
Interfaces of the external collaborators the pipeline talks to.

The Azure implementations live in azure_backend.py; tests substitute fakes.
All calls are blocking and only block the calling worker thread.
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .models import AccountRef, MetricSeries, ResourceRef
from .time_window import TimeWindow


class IdentityContext(ABC):
    """An already-authenticated session."""

    @abstractmethod
    def list_subscriptions(self) -> List[AccountRef]:
        """Every subscription the credential can see."""

    @abstractmethod
    def get_subscription(self, subscription_id: str) -> Optional[AccountRef]:
        """
        Resolve a single subscription id.

        Returns None when the id is unknown; raises on API errors.
        """


class ResourceDirectory(ABC):

    @abstractmethod
    def list_resources(self, account: AccountRef) -> Iterable[ResourceRef]:
        """List monitorable resources owned by the account."""


class MetricsClient(ABC):
    """A monitoring client bound to one subscription."""

    @abstractmethod
    def fetch(self, resource_id: str, metric_name: str, window: TimeWindow) -> MetricSeries:
        """
        Fetch samples for one metric over the window.

        May raise transient errors; the collector retries them.
        """


class MetricsBackend(ABC):

    @abstractmethod
    def client_for(self, account_id: str) -> MetricsClient:
        """Address a subscription; raising here is a resource-level failure."""
