"""
Azure implementations of the collaborator interfaces.

Uses DefaultAzureCredential (managed identity in Cloud Shell) with
azure-mgmt-subscription for the identity context, azure-mgmt-storage for
storage account discovery and azure-mgmt-monitor for metrics.
"""
import logging
import threading
from typing import Dict, Iterable, List, Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.mgmt.monitor import MonitorManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.subscription import SubscriptionClient

from .backends import IdentityContext, MetricsBackend, MetricsClient, ResourceDirectory
from .constants import DEFAULT_AGGREGATION, METRIC_AGGREGATIONS
from .errors import AuthenticationMissing
from .models import AccountRef, MetricSample, MetricSeries, ResourceRef
from .time_window import TimeWindow
from .utils import extract_resource_group

logger = logging.getLogger(__name__)


def get_credential():
    """
    Get Azure credential. In Cloud Shell, uses managed identity.

    Raises:
        AuthenticationMissing: If no credential source is available
    """
    try:
        return DefaultAzureCredential()
    except Exception as e:
        raise AuthenticationMissing(f"Failed to authenticate with Azure: {e}", original_error=e) from e


def _enum_str(value) -> Optional[str]:
    """SDK enums and plain strings both render as their value."""
    if value is None:
        return None
    return getattr(value, 'value', None) or str(value)


def _to_account(sub) -> AccountRef:
    return AccountRef(
        id=sub.subscription_id,
        display_name=sub.display_name or sub.subscription_id,
        state=_enum_str(sub.state),
    )


class AzureIdentityContext(IdentityContext):

    def __init__(self, credential):
        self.credential = credential
        self._client = SubscriptionClient(credential)

    def list_subscriptions(self) -> List[AccountRef]:
        return [_to_account(sub) for sub in self._client.subscriptions.list()]

    def get_subscription(self, subscription_id: str) -> Optional[AccountRef]:
        try:
            sub = self._client.subscriptions.get(subscription_id)
        except ResourceNotFoundError:
            return None
        return _to_account(sub) if sub else None


class AzureStorageDirectory(ResourceDirectory):
    """Lists storage accounts in a subscription."""

    def __init__(self, credential):
        self.credential = credential

    def list_resources(self, account: AccountRef) -> Iterable[ResourceRef]:
        storage_client = StorageManagementClient(self.credential, account.id)
        resources = []

        for sa in storage_client.storage_accounts.list():
            if not sa.id:
                continue
            sku = sa.sku
            resources.append(ResourceRef(
                resource_id=sa.id,
                account_id=account.id,
                resource_group=extract_resource_group(sa.id),
                name=sa.name,
                location=sa.location,
                kind=_enum_str(sa.kind),
                sku_name=_enum_str(sku.name) if sku else None,
                sku_tier=_enum_str(sku.tier) if sku else None,
                created_at=sa.creation_time,
            ))

        return resources


class AzureMonitorClient(MetricsClient):
    """Azure Monitor metrics for one subscription."""

    def __init__(self, monitor_client: MonitorManagementClient):
        self._client = monitor_client

    def fetch(self, resource_id: str, metric_name: str, window: TimeWindow) -> MetricSeries:
        response = self._client.metrics.list(
            resource_uri=resource_id,
            timespan=window.timespan,
            interval=window.interval_iso8601,
            metricnames=metric_name,
            aggregation=METRIC_AGGREGATIONS.get(metric_name, DEFAULT_AGGREGATION),
        )

        unit = None
        samples: List[MetricSample] = []
        for metric in response.value or []:
            unit = unit or _enum_str(metric.unit)
            for timeseries in metric.timeseries or []:
                for data in timeseries.data or []:
                    samples.append(MetricSample(
                        timestamp=data.time_stamp,
                        average=data.average,
                        total=data.total,
                        maximum=data.maximum,
                        minimum=data.minimum,
                        count=data.count,
                    ))

        return MetricSeries(metric_name=metric_name, unit=unit, samples=samples)


class AzureMetricsBackend(MetricsBackend):
    """
    Hands out one MonitorManagementClient per subscription, created on first
    use and shared by the workers collecting that subscription.
    """

    def __init__(self, credential):
        self.credential = credential
        self._clients: Dict[str, AzureMonitorClient] = {}
        self._lock = threading.Lock()

    def client_for(self, account_id: str) -> MetricsClient:
        if not account_id:
            raise ValueError("Resource has no subscription id")
        with self._lock:
            client = self._clients.get(account_id)
            if client is None:
                client = AzureMonitorClient(MonitorManagementClient(self.credential, account_id))
                self._clients[account_id] = client
        return client
