"""
Typed request variants for the manage-subscription endpoint.

The JSON body ``{"action": "...", ...params}`` is parsed into exactly one of the
frozen dataclasses below before anything touches the database. Field
validation lives here, at the boundary; the lifecycle service receives clean,
typed arguments.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from billing_core.billing.periods import PLAN_INTERVALS
from billing_core.errors import ValidationError
from billing_core.utils.helpers import round_currency

_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}

# Numeric(12, 2) column bounds
MAX_AMOUNT = Decimal("10000000000")
PAYMENT_METHOD_MAX_LENGTH = 32


def _ident(params: Mapping[str, Any], name: str) -> Optional[str]:
    val = params.get(name)
    if isinstance(val, bool) or val is None:
        return None
    if isinstance(val, (int, str)):
        s = str(val).strip()
        return s or None
    raise ValidationError(f"{name} must be a string")


def _flag(params: Mapping[str, Any], name: str, default: bool) -> bool:
    val = params.get(name)
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    if isinstance(val, int):
        return val != 0
    if isinstance(val, str) and val.strip().lower() in _TRUE | _FALSE:
        return val.strip().lower() in _TRUE
    raise ValidationError(f"{name} must be a boolean")


def _subscription_key(params: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    key = {
        "subscription_id": _ident(params, "subscription_id"),
        "external_subscription_id": _ident(params, "external_subscription_id"),
    }
    if not any(key.values()):
        raise ValidationError("Missing subscription_id or external_subscription_id")
    return key


@dataclass(frozen=True)
class CreateSubscription:
    action: ClassVar[str] = "create"
    user_id: str
    product_id: str
    amount: Decimal
    plan_interval: str
    payment_method: str
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    metadata: Optional[dict] = None

    @classmethod
    def parse(cls, params: Mapping[str, Any], defaults: Mapping[str, Any]) -> "CreateSubscription":
        user_id = _ident(params, "user_id")
        product_id = _ident(params, "product_id")
        raw_amount = params.get("amount")
        if not user_id or not product_id or raw_amount in (None, "", 0):
            raise ValidationError("Missing required fields: user_id, product_id, amount")

        amount = round_currency(raw_amount)
        if amount is None or amount <= 0:
            raise ValidationError("amount must be a positive number")
        if amount >= MAX_AMOUNT:
            raise ValidationError("amount is too large", {"max_amount": float(MAX_AMOUNT)})

        plan_interval = params.get("plan_interval") or defaults.get("DEFAULT_PLAN_INTERVAL", "monthly")
        if plan_interval not in PLAN_INTERVALS:
            raise ValidationError(
                "plan_interval must be one of: weekly, monthly, yearly",
                {"plan_interval": str(plan_interval)},
            )

        payment_method = _ident(params, "payment_method") or defaults.get("DEFAULT_PAYMENT_METHOD", "credit_card")
        if len(payment_method) > PAYMENT_METHOD_MAX_LENGTH:
            raise ValidationError(f"payment_method must be at most {PAYMENT_METHOD_MAX_LENGTH} characters")

        metadata = params.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        # External ids are sanitized by the service; keep them raw here
        ext_sub = params.get("external_subscription_id")
        ext_cus = params.get("external_customer_id")
        return cls(
            user_id=user_id,
            product_id=product_id,
            amount=amount,
            plan_interval=plan_interval,
            payment_method=payment_method,
            external_subscription_id=ext_sub if isinstance(ext_sub, str) else None,
            external_customer_id=ext_cus if isinstance(ext_cus, str) else None,
            metadata=metadata,
        )


@dataclass(frozen=True)
class ActivateSubscription:
    action: ClassVar[str] = "activate"
    subscription_id: Optional[str] = None
    external_subscription_id: Optional[str] = None

    @classmethod
    def parse(cls, params, defaults) -> "ActivateSubscription":
        return cls(**_subscription_key(params))


@dataclass(frozen=True)
class RenewSubscription:
    action: ClassVar[str] = "renew"
    subscription_id: Optional[str] = None
    external_subscription_id: Optional[str] = None

    @classmethod
    def parse(cls, params, defaults) -> "RenewSubscription":
        return cls(**_subscription_key(params))


@dataclass(frozen=True)
class ReportPaymentFailure:
    action: ClassVar[str] = "payment_failed"
    subscription_id: Optional[str] = None
    external_subscription_id: Optional[str] = None

    @classmethod
    def parse(cls, params, defaults) -> "ReportPaymentFailure":
        return cls(**_subscription_key(params))


@dataclass(frozen=True)
class CancelSubscription:
    action: ClassVar[str] = "cancel"
    subscription_id: str
    cancel_at_period_end: bool = True

    @classmethod
    def parse(cls, params, defaults) -> "CancelSubscription":
        subscription_id = _ident(params, "subscription_id")
        if not subscription_id:
            raise ValidationError("Missing subscription_id")
        return cls(
            subscription_id=subscription_id,
            cancel_at_period_end=_flag(params, "cancel_at_period_end", True),
        )


@dataclass(frozen=True)
class CheckAccess:
    action: ClassVar[str] = "check_access"
    user_id: str
    product_id: str

    @classmethod
    def parse(cls, params, defaults) -> "CheckAccess":
        user_id = _ident(params, "user_id")
        product_id = _ident(params, "product_id")
        if not user_id or not product_id:
            raise ValidationError("Missing user_id or product_id")
        return cls(user_id=user_id, product_id=product_id)


@dataclass(frozen=True)
class ListSubscriptions:
    action: ClassVar[str] = "list"
    user_id: str

    @classmethod
    def parse(cls, params, defaults) -> "ListSubscriptions":
        user_id = _ident(params, "user_id")
        if not user_id:
            raise ValidationError("Missing user_id")
        return cls(user_id=user_id)


ActionRequest = Union[
    CreateSubscription,
    ActivateSubscription,
    RenewSubscription,
    CancelSubscription,
    CheckAccess,
    ListSubscriptions,
    ReportPaymentFailure,
]

ACTIONS: Dict[str, type] = {
    cls.action: cls
    for cls in (
        CreateSubscription,
        ActivateSubscription,
        RenewSubscription,
        CancelSubscription,
        CheckAccess,
        ListSubscriptions,
        ReportPaymentFailure,
    )
}


def parse_action(body: Any, defaults: Mapping[str, Any] | None = None) -> ActionRequest:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    params = dict(body)
    action = params.pop("action", None)
    cls = ACTIONS.get(action) if isinstance(action, str) else None
    if cls is None:
        raise ValidationError(f"Unknown action: {action}")
    return cls.parse(params, defaults or {})
