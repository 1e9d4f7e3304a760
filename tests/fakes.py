"""
In-memory collaborators for pipeline tests.

Each fake records its calls so tests can assert what the pipeline asked for.
"""
import os
import sys
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storage_metrics.backends import IdentityContext, MetricsBackend, MetricsClient, ResourceDirectory
from storage_metrics.models import AccountRef, MetricSample, MetricSeries, ResourceRef

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)

SUB_A = "11111111-1111-1111-1111-111111111111"
SUB_B = "22222222-2222-2222-2222-222222222222"


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_account(sub_id: str = SUB_A, name: str = "Production", state: str = "Enabled") -> AccountRef:
    return AccountRef(id=sub_id, display_name=name, state=state)


def make_resource(name: str, account_id: str = SUB_A, location: str = "eastus",
                  resource_group: str = "rg-test") -> ResourceRef:
    return ResourceRef(
        resource_id=(
            f"/subscriptions/{account_id}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.Storage/storageAccounts/{name}"
        ),
        account_id=account_id,
        resource_group=resource_group,
        name=name,
        location=location,
        kind="StorageV2",
        sku_name="Standard_LRS",
        sku_tier="Standard",
        created_at=datetime(2024, 1, 15, tzinfo=timezone.utc),
    )


def make_series(metric: str, unit: Optional[str] = None, points: int = 1, **fields) -> MetricSeries:
    """Series whose newest sample carries the given fields."""
    samples = []
    for i in range(points):
        ts = FIXED_NOW - timedelta(hours=points - i)
        samples.append(MetricSample(timestamp=ts, **fields))
    return MetricSeries(metric_name=metric, unit=unit, samples=samples)


def empty_series(metric: str) -> MetricSeries:
    return MetricSeries(metric_name=metric, unit=None, samples=[])


class FakeIdentity(IdentityContext):

    def __init__(self, accounts: Sequence[AccountRef], errors: Optional[Dict[str, Exception]] = None,
                 list_error: Optional[Exception] = None):
        self.accounts = list(accounts)
        self.errors = errors or {}
        self.list_error = list_error
        self.calls: List[str] = []

    def list_subscriptions(self) -> List[AccountRef]:
        self.calls.append("list")
        if self.list_error:
            raise self.list_error
        return list(self.accounts)

    def get_subscription(self, subscription_id: str) -> Optional[AccountRef]:
        self.calls.append(subscription_id)
        if subscription_id in self.errors:
            raise self.errors[subscription_id]
        for account in self.accounts:
            if account.id == subscription_id:
                return account
        return None


class FakeDirectory(ResourceDirectory):

    def __init__(self, resources: Iterable[ResourceRef], errors: Optional[Dict[str, Exception]] = None):
        self.by_account: Dict[str, List[ResourceRef]] = defaultdict(list)
        for resource in resources:
            self.by_account[resource.account_id].append(resource)
        self.errors = errors or {}
        self.calls: List[str] = []

    def list_resources(self, account: AccountRef) -> List[ResourceRef]:
        self.calls.append(account.id)
        if account.id in self.errors:
            raise self.errors[account.id]
        return list(self.by_account.get(account.id, []))


Response = Union[MetricSeries, Exception]


class ScriptedClient(MetricsClient):
    """
    Replays scripted responses per (resource name, metric).

    A script entry is a list of responses consumed one per call; the last
    one repeats. Unscripted pairs return `default(metric)`.
    """

    def __init__(self, script: Optional[Dict[Tuple[str, str], List[Response]]] = None, default=None):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.default = default or (lambda metric: make_series(metric, average=1.0))
        self.calls: Dict[Tuple[str, str], int] = defaultdict(int)
        self._lock = threading.Lock()

    def fetch(self, resource_id: str, metric_name: str, window) -> MetricSeries:
        name = resource_id.rsplit('/', 1)[-1]
        key = (name, metric_name)
        with self._lock:
            self.calls[key] += 1
            responses = self.script.get(key)
            if responses:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
            else:
                response = None
        if response is None:
            return self.default(metric_name)
        if isinstance(response, Exception):
            raise response
        return response

    def total_calls(self) -> int:
        return sum(self.calls.values())


class FakeBackend(MetricsBackend):

    def __init__(self, client: Optional[MetricsClient] = None, failing_accounts: Iterable[str] = ()):
        self.client = client or ScriptedClient()
        self.failing_accounts = set(failing_accounts)
        self.addressed: List[str] = []
        self._lock = threading.Lock()

    def client_for(self, account_id: str) -> MetricsClient:
        with self._lock:
            self.addressed.append(account_id)
        if account_id in self.failing_accounts:
            raise RuntimeError(f"subscription {account_id} unreachable")
        return self.client


class RecordingSleep:
    """Sleep stand-in: records delays instead of waiting."""

    def __init__(self, on_sleep=None):
        self.delays: List[float] = []
        self.on_sleep = on_sleep
        self._lock = threading.Lock()

    def __call__(self, seconds: float) -> None:
        with self._lock:
            self.delays.append(seconds)
        if self.on_sleep:
            self.on_sleep(seconds)


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
