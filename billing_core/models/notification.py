from sqlalchemy import func, text
from billing_core.extensions import db

SEVERITIES = ("info", "success", "warning", "error")

class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, server_default=text("'info'"))  # info|success|warning|error
    link = db.Column(db.String(512), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False, server_default=text("false"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user_id={self.user_id} type={self.type!r}>"
