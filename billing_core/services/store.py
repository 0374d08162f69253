"""
Query layer over the subscriptions table and the rows it is joined with.

Reads only. Writes go through billing_core.services.lifecycle so every status
change passes the transition table first.
"""
from datetime import datetime
from typing import List, Optional

from billing_core.extensions import db
from billing_core.models import Product, Profile, Subscription
from billing_core.billing.state_machine import OPEN_STATUSES, SubscriptionStatus
from billing_core.utils.helpers import utcnow


def get_product(product_id: str) -> Optional[Product]:
    return db.session.get(Product, product_id)


def get_profile(user_id: str) -> Optional[Profile]:
    return db.session.get(Profile, user_id)


def find_subscription(subscription_id: str | None = None, external_subscription_id: str | None = None) -> Optional[Subscription]:
    """Internal id takes precedence when both keys are given."""
    if subscription_id:
        return db.session.get(Subscription, subscription_id)
    if external_subscription_id:
        return (
            Subscription.query
            .filter_by(external_subscription_id=external_subscription_id)
            .order_by(Subscription.created_at.desc())
            .first()
        )
    return None


def find_open_subscription(user_id: str, product_id: str) -> Optional[Subscription]:
    return (
        Subscription.query
        .filter(
            Subscription.user_id == user_id,
            Subscription.product_id == product_id,
            Subscription.status.in_(OPEN_STATUSES),
        )
        .first()
    )


def has_active_access(user_id: str, product_id: str, now: datetime | None = None) -> bool:
    """True when the pair has an active subscription whose period has not ended."""
    now = now or utcnow()
    q = Subscription.query.filter(
        Subscription.user_id == user_id,
        Subscription.product_id == product_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.current_period_end > now,
    )
    return db.session.query(q.exists()).scalar()


def get_active_subscription(user_id: str, product_id: str) -> Optional[Subscription]:
    return (
        Subscription.query
        .filter(
            Subscription.user_id == user_id,
            Subscription.product_id == product_id,
            Subscription.status.in_((SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value)),
        )
        .order_by(Subscription.created_at.desc())
        .first()
    )


def list_for_user(user_id: str) -> List[Subscription]:
    return (
        Subscription.query
        .filter_by(user_id=user_id)
        .order_by(Subscription.created_at.desc())
        .all()
    )
