"""
Resource discovery across subscriptions.
"""
import logging
from typing import List, Optional, Sequence

from .backends import ResourceDirectory
from .concurrency import CancellationToken, CollectionProgress
from .errors import DiscoveryFailure, check_and_raise_auth_error
from .models import AccountRef, FailureRecord, ResourceRef

logger = logging.getLogger(__name__)


def discover_resources(
    directory: ResourceDirectory,
    accounts: Sequence[AccountRef],
    continue_on_error: bool = True,
    progress: Optional[CollectionProgress] = None,
    cancel_token: Optional[CancellationToken] = None,
    regions: Optional[Sequence[str]] = None
) -> List[ResourceRef]:
    """
    List resources in every subscription, in subscription order.

    A listing failure either skips the subscription (recorded on progress)
    or aborts discovery, depending on continue_on_error. Auth errors always
    abort. When a region filter is given, only resources in those regions
    are returned.

    Raises:
        DiscoveryFailure: Listing failed and continue_on_error is False
        AuthenticationMissing: The credential was rejected
        CollectionCancelled: The run was cancelled between subscriptions
    """
    region_filter = {r.strip().lower() for r in regions if r.strip()} if regions else None
    resources: List[ResourceRef] = []

    for account in accounts:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        logger.info(f"Discovering storage accounts in subscription: {account.display_name} ({account.id})")
        try:
            found = list(directory.list_resources(account))
        except Exception as e:
            check_and_raise_auth_error(e, f"list resources in subscription {account.id}")
            if not continue_on_error:
                logger.error(f"Failed to list resources in subscription {account.id} ({account.display_name}): {e}")
                raise DiscoveryFailure(
                    account.id,
                    f"Failed to list resources in subscription {account.id}: {e}",
                    original_error=e
                ) from e
            logger.warning(f"Skipping subscription {account.id} ({account.display_name}): {e}")
            if progress is not None:
                progress.record_failure(FailureRecord(
                    scope="account", identifier=account.id, name=account.display_name, error=str(e)
                ))
            continue

        if region_filter is not None:
            found = [r for r in found if r.location and r.location.lower() in region_filter]

        logger.info(f"Found {len(found)} storage accounts in {account.display_name or account.id}")
        resources.extend(found)

    if progress is not None:
        progress.set_total(len(resources))
    logger.info(f"Discovered {len(resources)} storage accounts across {len(accounts)} subscription(s)")
    return resources
