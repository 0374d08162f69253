import uuid
from sqlalchemy import func, text
from billing_core.extensions import db
from billing_core.utils.helpers import isoformat

# Mirrors OPEN_STATUSES in billing_core.billing.state_machine
_OPEN_STATUS_SQL = "status IN ('pending', 'active', 'past_due')"

def _new_id() -> str:
    return str(uuid.uuid4())

class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, index=True, server_default=text("'pending'"))
    plan_interval = db.Column(db.String(16), nullable=False, server_default=text("'monthly'"))

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, server_default=text("'BRL'"))
    payment_method = db.Column(db.String(32), nullable=True)

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False, server_default=text("false"))
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    external_subscription_id = db.Column(db.String(100), nullable=True, index=True)
    external_customer_id = db.Column(db.String(100), nullable=True)

    # "metadata" is reserved on declarative models
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    product = db.relationship("Product", lazy="joined")

    __table_args__ = (
        # One pending/active/past_due subscription per (user, product)
        db.Index(
            "uq_subscriptions_open_per_user_product",
            "user_id", "product_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_SQL),
            sqlite_where=text(_OPEN_STATUS_SQL),
        ),
    )

    @property
    def sale_id(self) -> str | None:
        meta = self.meta if isinstance(self.meta, dict) else {}
        sale_id = meta.get("sale_id")
        return str(sale_id) if sale_id else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "status": self.status,
            "plan_interval": self.plan_interval,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "current_period_start": isoformat(self.current_period_start),
            "current_period_end": isoformat(self.current_period_end),
            "started_at": isoformat(self.started_at),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "canceled_at": isoformat(self.canceled_at),
            "external_subscription_id": self.external_subscription_id,
            "external_customer_id": self.external_customer_id,
            "metadata": self.meta,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} user_id={self.user_id} product_id={self.product_id} status={self.status!r}>"
