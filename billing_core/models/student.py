import uuid
from sqlalchemy import func, text, UniqueConstraint
from billing_core.extensions import db

class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(320), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_user_id = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(20), nullable=False, server_default=text("'active'"))

    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("email", "product_id", name="uq_students_email_product"),
    )

    def __repr__(self) -> str:
        return f"<Student id={self.id} email={self.email} product_id={self.product_id}>"
