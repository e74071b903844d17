import json
import time

import pytest

from app.bdgenai.db import session_scope
from app.bdgenai.modules.checkout.models import Enrollment, Purchase
from app.bdgenai.modules.checkout.stripe_client import StripeSignatureError, construct_event, sign_payload

WEBHOOK_SECRET = "whsec_test"


def _published_course(c, price):
    course_id = c.post("/api/courses", json={"title": "Paid course"}).json["id"]
    c.patch(f"/api/courses/{course_id}", json={"description": "Desc", "price": price})
    assert c.patch(f"/api/courses/{course_id}/publish").status_code == 200
    return course_id


def _webhook(client, event: dict, secret: str = WEBHOOK_SECRET):
    body = json.dumps(event).encode("utf-8")
    return client.post(
        "/api/webhooks/stripe",
        data=body,
        headers={"Stripe-Signature": sign_payload(body, secret, int(time.time())), "Content-Type": "application/json"},
    )


def _completed_event(user_id, course_id, session_id="cs_test_1"):
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "amount_total": 4900,
                "metadata": {"user_id": str(user_id), "course_id": str(course_id)},
            }
        },
    }


def test_free_course_enroll_is_idempotent(alice, bob):
    course_id = _published_course(alice, 0)
    assert bob.post(f"/api/courses/{course_id}/enroll").status_code == 201
    assert bob.post(f"/api/courses/{course_id}/enroll").status_code == 200

    mine = bob.get("/api/me/courses").json
    assert [c["id"] for c in mine["enrolled"]] == [course_id]
    assert mine["created"] == []
    assert [c["id"] for c in alice.get("/api/me/courses").json["created"]] == [course_id]


def test_paid_course_cannot_be_enrolled_for_free(alice, bob):
    course_id = _published_course(alice, 49)
    r = bob.post(f"/api/courses/{course_id}/enroll")
    assert r.status_code == 400
    assert r.json["error"] == "Course requires payment"


def test_checkout_without_stripe_key(alice, bob):
    course_id = _published_course(alice, 49)
    r = bob.post(f"/api/courses/{course_id}/checkout")
    assert r.status_code == 500
    assert r.json["error"] == "Payments are not configured"


def test_checkout_unknown_course(bob):
    assert bob.post("/api/courses/999/checkout").status_code == 404


def test_webhook_rejects_bad_signature(app, client):
    app.config["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
    r = _webhook(client, {"type": "ping"}, secret="wrong")
    assert r.status_code == 400
    assert r.json["error"].startswith("Webhook Error")


def test_webhook_completed_creates_enrollment_once(app, client, alice, bob, user_id):
    app.config["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
    course_id = _published_course(alice, 49)
    event = _completed_event(user_id("bob@example.com"), course_id)

    assert _webhook(client, event).json == {"received": True}
    assert _webhook(client, event).status_code == 200

    with session_scope(app) as s:
        assert s.query(Enrollment).filter(Enrollment.course_id == course_id).count() == 1
        purchase = s.query(Purchase).one()
        assert purchase.stripe_session_id == "cs_test_1"
        assert float(purchase.amount) == 49.0

    assert [c["id"] for c in bob.get("/api/me/courses").json["enrolled"]] == [course_id]
    r = bob.post(f"/api/courses/{course_id}/checkout")
    assert r.status_code == 400
    assert r.json["error"] == "Already enrolled"


def test_webhook_ignores_other_events(app, client):
    app.config["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
    assert _webhook(client, {"type": "invoice.paid", "data": {"object": {}}}).status_code == 200


def test_construct_event_checks_timestamp_tolerance():
    body = b'{"type": "ping"}'
    header = sign_payload(body, WEBHOOK_SECRET, 1_000)
    assert construct_event(body, header, WEBHOOK_SECRET, now=1_100)["type"] == "ping"
    with pytest.raises(StripeSignatureError):
        construct_event(body, header, WEBHOOK_SECRET, now=10_000)
    with pytest.raises(StripeSignatureError):
        construct_event(body, None, WEBHOOK_SECRET)
    with pytest.raises(StripeSignatureError):
        construct_event(body, header, "")
