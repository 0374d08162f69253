from sqlalchemy import func, text
from billing_core.extensions import db

class EffectFailureLog(db.Model):
    """Side effect that raised during dispatch; kept for `flask effects retry`."""
    __tablename__ = "effect_failure_logs"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(40), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    subscription_id = db.Column(db.String(36), nullable=True, index=True)
    error = db.Column(db.String(255), nullable=True)
    retries = db.Column(db.Integer, nullable=False, default=0, server_default=text("0"))

    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<EffectFailureLog id={self.id} kind={self.kind!r} resolved={self.resolved_at is not None}>"
