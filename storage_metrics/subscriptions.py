"""
Subscription scope resolution.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from .backends import IdentityContext
from .constants import SUBSCRIPTION_STATE_ENABLED
from .errors import (
    AccountResolutionFailure,
    NoAccessibleAccounts,
    check_and_raise_auth_error,
)
from .models import AccountRef

logger = logging.getLogger(__name__)


def _dedupe(ids: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for raw in ids:
        sub_id = (raw or '').strip()
        if sub_id and sub_id.lower() not in seen:
            seen.add(sub_id.lower())
            result.append(sub_id)
    return result


def resolve_subscriptions(
    identity: IdentityContext,
    account_ids: Optional[Sequence[str]] = None,
    include_disabled: bool = False
) -> Tuple[List[AccountRef], List[AccountResolutionFailure]]:
    """
    Resolve the working set of subscriptions to scan.

    With no ids, every subscription the credential can see (Enabled ones
    only unless include_disabled). With ids, each is resolved on its own;
    ids that cannot be resolved are dropped with a warning.

    Returns:
        (accounts, warnings) where warnings holds one AccountResolutionFailure
        per dropped id

    Raises:
        NoAccessibleAccounts: If the resolved set is empty
        AuthenticationMissing: If the credential is rejected
    """
    warnings: List[AccountResolutionFailure] = []
    requested = _dedupe(account_ids or [])

    if not requested:
        try:
            accounts = identity.list_subscriptions()
        except Exception as e:
            check_and_raise_auth_error(e, "list subscriptions")
            raise NoAccessibleAccounts(f"Failed to list Azure subscriptions: {e}", original_error=e) from e

        if not include_disabled:
            skipped = [a for a in accounts if a.state and a.state != SUBSCRIPTION_STATE_ENABLED]
            for account in skipped:
                logger.info(f"Skipping subscription {account.id} ({account.display_name}): state is {account.state}")
            accounts = [a for a in accounts if a not in skipped]
    else:
        accounts = []
        for sub_id in requested:
            try:
                account = identity.get_subscription(sub_id)
            except Exception as e:
                check_and_raise_auth_error(e, f"resolve subscription {sub_id}")
                message = f"Subscription {sub_id} could not be resolved: {e}"
                warnings.append(AccountResolutionFailure(sub_id, message, original_error=e))
                logger.warning(message)
                continue

            if account is None:
                message = f"Subscription {sub_id} not found or not accessible"
                warnings.append(AccountResolutionFailure(sub_id, message))
                logger.warning(message)
                continue
            accounts.append(account)

    # Uniqueness key is the subscription id
    unique: List[AccountRef] = []
    seen = set()
    for account in accounts:
        if account.id not in seen:
            seen.add(account.id)
            unique.append(account)

    if not unique:
        raise NoAccessibleAccounts("No accessible Azure subscriptions found. Check permissions.")

    logger.info(f"Found {len(unique)} subscription(s) to scan")
    return unique, warnings
