from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from app.bdgenai.audit import record_event
from app.bdgenai.modules.checkout.models import Enrollment, Purchase, StripeCustomer
from app.bdgenai.modules.checkout.stripe_client import StripeClient

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.bdgenai.models import User
    from app.bdgenai.modules.courses.models import Course

logger = logging.getLogger(__name__)

CURRENCY = "usd"


def is_enrolled(s: "Session", user_id: int, course_id: int) -> bool:
    return (
        s.query(Enrollment.id)
        .filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
        .first()
        is not None
    )


def get_enrollment(s: "Session", user_id: int, course_id: int) -> Enrollment | None:
    return (
        s.query(Enrollment)
        .filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
        .one_or_none()
    )


def ensure_enrollment(s: "Session", user: "User", course: "Course", *, source: str) -> tuple[Enrollment, bool]:
    """Idempotent: returns (enrollment, created)."""
    existing = get_enrollment(s, user.id, course.id)
    if existing:
        return existing, False
    enrollment = Enrollment(user_id=user.id, course_id=course.id)
    s.add(enrollment)
    s.flush()
    record_event(
        s,
        actor=user,
        action="enrollment.create",
        entity_type="Enrollment",
        entity_id=enrollment.id,
        metadata={"course_id": course.id, "source": source},
    )
    return enrollment, True


def get_or_create_stripe_customer(s: "Session", client: StripeClient, user: "User") -> StripeCustomer:
    customer = s.query(StripeCustomer).filter(StripeCustomer.user_id == user.id).one_or_none()
    if customer:
        return customer
    created = client.create_customer(email=user.email, name=user.name)
    customer = StripeCustomer(user_id=user.id, stripe_customer_id=created["id"])
    s.add(customer)
    s.flush()
    record_event(s, actor=user, action="stripe_customer.create", entity_type="StripeCustomer", entity_id=customer.id)
    return customer


def create_checkout_url(s: "Session", client: StripeClient, course: "Course", user: "User", app_url: str) -> str:
    customer = get_or_create_stripe_customer(s, client, user)
    amount_cents = int((Decimal(course.price) * 100).quantize(Decimal("1")))
    session = client.create_checkout_session(
        customer_id=customer.stripe_customer_id,
        product_name=course.title,
        product_description=course.description,
        unit_amount_cents=amount_cents,
        currency=CURRENCY,
        success_url=f"{app_url}/courses/{course.id}?success=1",
        cancel_url=f"{app_url}/courses/{course.id}?canceled=1",
        metadata={"course_id": str(course.id), "user_id": str(user.id)},
    )
    record_event(
        s,
        actor=user,
        action="checkout.session_create",
        entity_type="Course",
        entity_id=course.id,
        metadata={"stripe_session_id": session.get("id"), "amount_cents": amount_cents},
    )
    return session["url"]


def handle_checkout_completed(s: "Session", session_obj: dict[str, Any]) -> Enrollment | None:
    """
    checkout.session.completed -> Purchase + Enrollment. Replays of the same session are no-ops.
    """
    from app.bdgenai.models import User
    from app.bdgenai.modules.courses.models import Course

    metadata = session_obj.get("metadata") or {}
    try:
        user_id = int(metadata.get("user_id"))
        course_id = int(metadata.get("course_id"))
    except (TypeError, ValueError):
        logger.warning("Stripe webhook missing metadata (session=%s)", session_obj.get("id"))
        return None

    user = s.get(User, user_id)
    course = s.get(Course, course_id)
    if not user or not course:
        logger.warning("Stripe webhook for unknown user/course (user_id=%s course_id=%s)", user_id, course_id)
        return None

    stripe_session_id = str(session_obj.get("id") or "")
    if stripe_session_id and not s.query(Purchase).filter(Purchase.stripe_session_id == stripe_session_id).one_or_none():
        amount_total = session_obj.get("amount_total")
        s.add(
            Purchase(
                user_id=user.id,
                course_id=course.id,
                stripe_session_id=stripe_session_id,
                amount=(Decimal(amount_total) / 100) if amount_total is not None else None,
            )
        )
        record_event(
            s,
            actor=user,
            action="purchase.create",
            entity_type="Course",
            entity_id=course.id,
            metadata={"stripe_session_id": stripe_session_id},
        )
    enrollment, _created = ensure_enrollment(s, user, course, source="stripe")
    return enrollment
