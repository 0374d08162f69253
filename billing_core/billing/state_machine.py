from enum import Enum
from typing import Dict, FrozenSet

from billing_core.errors import InvalidState


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


# Statuses that count against the one-open-subscription-per-pair rule
OPEN_STATUSES = frozenset({
    SubscriptionStatus.PENDING.value,
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAST_DUE.value,
})

_S = SubscriptionStatus

# from -> allowed targets. Self-loops cover period refreshes, idempotent
# payment failures and scheduled cancellation (status kept, flag set).
TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    _S.PENDING: frozenset({_S.PENDING, _S.ACTIVE, _S.CANCELED}),
    _S.ACTIVE: frozenset({_S.ACTIVE, _S.PAST_DUE, _S.CANCELED}),
    _S.PAST_DUE: frozenset({_S.PAST_DUE, _S.ACTIVE, _S.CANCELED}),
    _S.CANCELED: frozenset(),
}


def can_transition(current, target) -> bool:
    try:
        src, dst = SubscriptionStatus(current), SubscriptionStatus(target)
    except ValueError:
        return False
    return dst in TRANSITIONS[src]


def ensure_transition(current, target, *, subscription_id=None) -> SubscriptionStatus:
    """Return the target status, or raise InvalidState for an illegal pair."""
    if not can_transition(current, target):
        details = {"current_status": str(getattr(current, "value", current))}
        if subscription_id:
            details["subscription_id"] = subscription_id
        raise InvalidState(
            f"Cannot move subscription from {details['current_status']} to {getattr(target, 'value', target)}",
            details,
        )
    return SubscriptionStatus(target)
