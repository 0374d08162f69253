import uuid
from sqlalchemy import func, text
from billing_core.extensions import db

ENROLLMENT_ACTIVE = "active"
ENROLLMENT_CANCELLED = "cancelled"

class Enrollment(db.Model):
    __tablename__ = "enrollments"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id = db.Column(db.String(36), db.ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sale_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, server_default=text("'active'"))  # active|cancelled|completed
    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    access_revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoke_reason = db.Column(db.String(255), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    student = db.relationship("Student", backref=db.backref("enrollments", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<Enrollment id={self.id} student_id={self.student_id} status={self.status!r}>"
