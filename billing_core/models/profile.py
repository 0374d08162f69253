from sqlalchemy import func
from billing_core.extensions import db

class Profile(db.Model):
    __tablename__ = "profiles"

    user_id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    full_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
