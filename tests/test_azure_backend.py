"""
Tests for the Azure adapters using unittest.mock.

Covers:
- Subscription listing and lookup
- Storage account discovery
- Azure Monitor metric fetch and sample mapping
- Per-subscription monitor client cache
"""
import os
import sys
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from azure.core.exceptions import ResourceNotFoundError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storage_metrics.azure_backend import (
    AzureIdentityContext,
    AzureMetricsBackend,
    AzureMonitorClient,
    AzureStorageDirectory,
    get_credential,
)
from storage_metrics.errors import AuthenticationMissing
from storage_metrics.models import AccountRef
from storage_metrics.time_window import resolve_time_window

# =============================================================================
# Fixtures
# =============================================================================

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_credential():
    """Create a mock Azure credential."""
    return Mock()


@pytest.fixture
def subscription_id():
    """Test subscription ID."""
    return "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def window():
    return resolve_time_window('1d', '1h', now=lambda: NOW)


# =============================================================================
# Helper Functions
# =============================================================================

def create_mock_subscription(sub_id: str, display_name: str = "Production", state: str = "Enabled"):
    """Create a mock Azure subscription object."""
    sub = Mock()
    sub.subscription_id = sub_id
    sub.display_name = display_name
    sub.state = Mock(value=state)
    return sub


def create_mock_storage_account(
    name: str,
    subscription_id: str,
    location: str = "eastus",
    kind: str = "StorageV2",
    sku_name: str = "Standard_LRS",
    sku_tier: str = "Standard",
    resource_group: str = "rg-Storage"
):
    """Create a mock Azure Storage Account object."""
    sa = Mock()
    sa.id = (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        f"/providers/Microsoft.Storage/storageAccounts/{name}"
    )
    sa.name = name
    sa.location = location
    sa.kind = kind
    sa.sku = Mock()
    sa.sku.name = sku_name
    sa.sku.tier = sku_tier
    sa.creation_time = datetime(2024, 1, 15, tzinfo=timezone.utc)
    return sa


def create_mock_metric_response(unit: str = "Count", points=None):
    """Create a mock Azure Monitor metrics.list response."""
    data = []
    for point in points or []:
        item = Mock()
        item.time_stamp = point.get('time_stamp', NOW)
        item.average = point.get('average')
        item.total = point.get('total')
        item.maximum = point.get('maximum')
        item.minimum = point.get('minimum')
        item.count = point.get('count')
        data.append(item)

    timeseries = Mock()
    timeseries.data = data

    metric = Mock()
    metric.unit = unit
    metric.timeseries = [timeseries]

    response = Mock()
    response.value = [metric]
    return response


# =============================================================================
# Identity Tests
# =============================================================================

class TestAzureIdentityContext:
    """Tests for subscription listing and lookup."""

    def test_list_subscriptions(self, mock_credential, subscription_id):
        """Test subscriptions are mapped to AccountRef with their state."""
        with patch('storage_metrics.azure_backend.SubscriptionClient') as mock_client_class:
            mock_client = Mock()
            mock_client_class.return_value = mock_client
            mock_client.subscriptions.list.return_value = [
                create_mock_subscription(subscription_id, "Production"),
                create_mock_subscription("sub-2", "Legacy", state="Disabled"),
            ]

            identity = AzureIdentityContext(mock_credential)
            accounts = identity.list_subscriptions()

        assert accounts == [
            AccountRef(id=subscription_id, display_name="Production", state="Enabled"),
            AccountRef(id="sub-2", display_name="Legacy", state="Disabled"),
        ]

    def test_get_subscription(self, mock_credential, subscription_id):
        """Test a single subscription lookup."""
        with patch('storage_metrics.azure_backend.SubscriptionClient') as mock_client_class:
            mock_client = Mock()
            mock_client_class.return_value = mock_client
            mock_client.subscriptions.get.return_value = create_mock_subscription(subscription_id)

            account = AzureIdentityContext(mock_credential).get_subscription(subscription_id)

        assert account.id == subscription_id
        mock_client.subscriptions.get.assert_called_once_with(subscription_id)

    def test_get_unknown_subscription(self, mock_credential):
        """Test an unknown subscription id resolves to None."""
        with patch('storage_metrics.azure_backend.SubscriptionClient') as mock_client_class:
            mock_client = Mock()
            mock_client_class.return_value = mock_client
            mock_client.subscriptions.get.side_effect = ResourceNotFoundError("not found")

            assert AzureIdentityContext(mock_credential).get_subscription("missing") is None

    def test_display_name_fallback(self, mock_credential, subscription_id):
        """Test the subscription id is used when there is no display name."""
        with patch('storage_metrics.azure_backend.SubscriptionClient') as mock_client_class:
            mock_client = Mock()
            mock_client_class.return_value = mock_client
            mock_client.subscriptions.list.return_value = [create_mock_subscription(subscription_id, None)]

            accounts = AzureIdentityContext(mock_credential).list_subscriptions()

        assert accounts[0].display_name == subscription_id


class TestGetCredential:
    """Tests for credential creation."""

    def test_credential_failure(self):
        """Test credential errors are raised as AuthenticationMissing."""
        with patch('storage_metrics.azure_backend.DefaultAzureCredential', side_effect=ValueError("no env")):
            with pytest.raises(AuthenticationMissing):
                get_credential()


# =============================================================================
# Discovery Tests
# =============================================================================

class TestAzureStorageDirectory:
    """Tests for storage account discovery."""

    def test_list_storage_accounts(self, mock_credential, subscription_id):
        """Test storage accounts are mapped to ResourceRef."""
        account = AccountRef(id=subscription_id, display_name="Production")
        with patch('storage_metrics.azure_backend.StorageManagementClient') as mock_client_class:
            mock_client = Mock()
            mock_client_class.return_value = mock_client
            mock_client.storage_accounts.list.return_value = [
                create_mock_storage_account("stprod001", subscription_id),
                create_mock_storage_account("starchive", subscription_id, location="westus2",
                                            kind="BlobStorage", sku_name="Standard_GRS"),
            ]

            resources = list(AzureStorageDirectory(mock_credential).list_resources(account))

        mock_client_class.assert_called_once_with(mock_credential, subscription_id)
        assert len(resources) == 2
        first = resources[0]
        assert first.name == "stprod001"
        assert first.account_id == subscription_id
        assert first.resource_group == "rg-Storage"
        assert first.kind == "StorageV2"
        assert first.sku_name == "Standard_LRS"
        assert first.sku_tier == "Standard"
        assert resources[1].location == "westus2"

    def test_skips_accounts_without_id(self, mock_credential, subscription_id):
        """Test entries without a resource id are ignored."""
        broken = create_mock_storage_account("broken", subscription_id)
        broken.id = None
        with patch('storage_metrics.azure_backend.StorageManagementClient') as mock_client_class:
            mock_client_class.return_value.storage_accounts.list.return_value = [broken]

            resources = list(AzureStorageDirectory(mock_credential).list_resources(AccountRef(id=subscription_id)))

        assert resources == []


# =============================================================================
# Metrics Tests
# =============================================================================

class TestAzureMonitorClient:
    """Tests for Azure Monitor metric fetches."""

    def test_fetch_request(self, window, subscription_id):
        """Test the metrics query carries window, interval and aggregation."""
        monitor = Mock()
        monitor.metrics.list.return_value = create_mock_metric_response(points=[{'total': 12.0}])
        resource_id = create_mock_storage_account("stprod001", subscription_id).id

        AzureMonitorClient(monitor).fetch(resource_id, "Transactions", window)

        monitor.metrics.list.assert_called_once_with(
            resource_uri=resource_id,
            timespan=window.timespan,
            interval='PT1H',
            metricnames="Transactions",
            aggregation="Total",
        )

    def test_fetch_maps_samples(self, window):
        """Test every data point becomes a MetricSample."""
        monitor = Mock()
        monitor.metrics.list.return_value = create_mock_metric_response(
            unit="Percent",
            points=[
                {'average': 99.5, 'minimum': 98.0, 'maximum': 100.0},
                {'average': None},
            ],
        )

        series = AzureMonitorClient(monitor).fetch("/subscriptions/x/resource", "Availability", window)

        assert series.metric_name == "Availability"
        assert series.unit == "Percent"
        assert len(series.samples) == 2
        assert series.samples[0].average == 99.5
        assert series.samples[0].minimum == 98.0
        assert series.samples[1].average is None

    def test_fetch_empty_response(self, window):
        """Test a response without metrics yields an empty series."""
        monitor = Mock()
        response = Mock()
        response.value = []
        monitor.metrics.list.return_value = response

        series = AzureMonitorClient(monitor).fetch("/subscriptions/x/resource", "Egress", window)

        assert series.samples == []
        assert series.unit is None

    def test_fetch_error_propagates(self, window):
        """Test API errors are left to the collector's retry."""
        monitor = Mock()
        monitor.metrics.list.side_effect = RuntimeError("429 Too Many Requests")

        with pytest.raises(RuntimeError):
            AzureMonitorClient(monitor).fetch("/subscriptions/x/resource", "Transactions", window)


class TestAzureMetricsBackend:
    """Tests for per-subscription monitor clients."""

    def test_client_cached_per_subscription(self, mock_credential):
        """Test one monitor client is created per subscription."""
        with patch('storage_metrics.azure_backend.MonitorManagementClient') as mock_client_class:
            backend = AzureMetricsBackend(mock_credential)

            first = backend.client_for("sub-1")
            again = backend.client_for("sub-1")
            other = backend.client_for("sub-2")

        assert first is again
        assert first is not other
        assert mock_client_class.call_count == 2
        mock_client_class.assert_any_call(mock_credential, "sub-1")

    def test_missing_subscription_id(self, mock_credential):
        """Test a resource without a subscription cannot be addressed."""
        with pytest.raises(ValueError):
            AzureMetricsBackend(mock_credential).client_for("")
