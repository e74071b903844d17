"""
Enrollment and payments.

Free courses enroll directly; paid courses go through a Stripe Checkout session and are
enrolled by the signed checkout.session.completed webhook. Enrollment is idempotent.
"""
