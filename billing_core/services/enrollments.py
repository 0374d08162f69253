"""
Enrollment store primitives (member-area access).

Each call is idempotent and commits on its own, so a redelivered webhook can run
it again without creating a second student or enrollment.
"""
from datetime import datetime
from typing import Optional

from billing_core.extensions import db
from billing_core.models import Enrollment, Product, Student
from billing_core.models.enrollment import ENROLLMENT_ACTIVE, ENROLLMENT_CANCELLED
from billing_core.utils.helpers import utcnow
from billing_core.utils.validators import clean_str


def _norm_email(email: str) -> str:
    return (email or "").strip().lower()


def find_student(email: str, product_id: str) -> Optional[Student]:
    return Student.query.filter_by(email=_norm_email(email), product_id=product_id).first()


def create_enrollment_after_payment(sale_id: str, student_email: str, student_name: str, product_id: str) -> Optional[str]:
    """Get-or-create the student and its enrollment, (re)activated and linked to the sale."""
    product = db.session.get(Product, product_id)
    if not product:
        return None

    email = _norm_email(student_email)
    student = find_student(email, product_id)
    if not student:
        student = Student(
            email=email,
            name=clean_str(student_name) or email,
            product_id=product_id,
            seller_user_id=product.user_id,
            status="active",
        )
        db.session.add(student)
        db.session.flush()

    enrollment = Enrollment.query.filter_by(student_id=student.id, product_id=product_id).first()
    if not enrollment:
        enrollment = Enrollment(student_id=student.id, product_id=product_id)
        db.session.add(enrollment)

    enrollment.sale_id = sale_id
    enrollment.status = ENROLLMENT_ACTIVE
    enrollment.access_revoked_at = None
    enrollment.revoke_reason = None
    db.session.commit()
    return enrollment.id


def _cancel(query, reason: str, now: datetime) -> int:
    count = 0
    for enrollment in query.filter(Enrollment.status != ENROLLMENT_CANCELLED).all():
        enrollment.status = ENROLLMENT_CANCELLED
        enrollment.access_revoked_at = now
        enrollment.revoke_reason = clean_str(reason)
        count += 1
    db.session.commit()
    return count


def revoke_enrollment(sale_id: str, reason: str, now: datetime | None = None) -> int:
    """Cancel every enrollment linked to ``sale_id``. Returns how many changed."""
    return _cancel(Enrollment.query.filter_by(sale_id=sale_id), reason, now or utcnow())


def cancel_student_enrollments(student_id: str, product_id: str, reason: str, now: datetime | None = None) -> int:
    return _cancel(
        Enrollment.query.filter_by(student_id=student_id, product_id=product_id),
        reason,
        now or utcnow(),
    )
