"""
Entitlement synchronizer: decides nothing, only forwards to the enrollment store.

The lifecycle service chooses *when* to grant or revoke. Revocation has two
paths: by the originating sale when the subscription carries ``sale_id`` in its
metadata, otherwise by looking the student up from (email, product). The second
path exists for subscriptions created without a sale link and should not grow
further.
"""
import json
from typing import Optional
from flask import current_app
from billing_core.services import enrollments


def _log(event: str, **fields):
    current_app.logger.info(json.dumps({"event": event, **fields}))


def grant(sale_id: str, student_email: str, student_name: str, product_id: str) -> Optional[str]:
    enrollment_id = enrollments.create_enrollment_after_payment(sale_id, student_email, student_name, product_id)
    _log("entitlement_granted" if enrollment_id else "entitlement_grant_skipped",
         sale_id=sale_id, product_id=product_id, enrollment_id=enrollment_id)
    return enrollment_id


def revoke(sale_id: str, reason: str) -> None:
    changed = enrollments.revoke_enrollment(sale_id, reason)
    _log("entitlement_revoked", path="sale", sale_id=sale_id, changed=changed)


def revoke_by_lookup(email: str, product_id: str, reason: str) -> None:
    student = enrollments.find_student(email, product_id)
    if not student:
        _log("entitlement_revoke_skipped", path="lookup", product_id=product_id, reason="student_not_found")
        return
    changed = enrollments.cancel_student_enrollments(student.id, product_id, reason)
    _log("entitlement_revoked", path="lookup", student_id=student.id, product_id=product_id, changed=changed)
