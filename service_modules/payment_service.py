"""
Payment Service - Stripe subscriptions for membership plans and payment history.
"""
import os
import stripe

from .base import (
    logging, ValidationError, ExternalServiceError, ServiceUnavailableError,
    DatabaseStorage, get_storage
)
from .membership_service import MembershipService, get_membership_service
from .notification_service import NotificationService, get_notification_service
from .serializers import row_to_dict
from typing import List

# Configure Stripe
stripe.api_key = os.environ.get("STRIPE_SECRET_KEY")

logger = logging.getLogger("gym_app")

# Stripe sends these currencies in whole units, everything else in cents
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}


def from_minor_units(amount: int, currency: str) -> float:
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return float(amount)
    return amount / 100


# Check if Stripe is configured
def is_stripe_configured():
    """Check if Stripe API key is configured (not a placeholder)."""
    api_key = os.environ.get("STRIPE_SECRET_KEY")
    return bool(api_key) and not api_key.startswith("your_") and len(api_key) > 20


class PaymentService:
    """Service for membership purchases through Stripe."""

    def __init__(self, storage: DatabaseStorage, memberships: MembershipService,
                 notifications: NotificationService):
        self.storage = storage
        self.memberships = memberships
        self.notifications = notifications

    def create_subscription(self, user, plan_id: str) -> dict:
        """
        Start a Stripe subscription for a plan. The membership is activated by
        the invoice.payment_succeeded webhook, not here.
        """
        if not is_stripe_configured():
            raise ServiceUnavailableError("Online payments are not configured")

        plan = self.storage.get_plan(plan_id)
        if plan is None or not plan.active:
            raise ValidationError("Unknown membership plan")
        if not plan.stripe_price_id:
            raise ValidationError("This plan cannot be purchased online")

        try:
            customer_id = user.stripe_customer_id
            if not customer_id:
                customer = stripe.Customer.create(
                    email=user.email,
                    name=" ".join(p for p in (user.first_name, user.last_name) if p) or user.username,
                    metadata={"user_id": user.id}
                )
                customer_id = customer.id
                self.storage.update_user(user.id, stripe_customer_id=customer_id)

            stripe_sub = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": plan.stripe_price_id}],
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                expand=["latest_invoice.payment_intent"],
                metadata={"user_id": user.id, "plan_id": plan.id}
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating subscription for user {user.id}: {e}")
            raise ExternalServiceError(f"Payment provider error: {e.user_message or 'please try again'}")

        self.storage.update_user(user.id, stripe_subscription_id=stripe_sub.id)

        invoice = stripe_sub.latest_invoice
        payment_intent = invoice.payment_intent if invoice else None
        payment = self.storage.create_payment(
            user_id=user.id,
            plan_id=plan.id,
            amount=plan.price,
            currency=plan.currency,
            stripe_payment_intent_id=payment_intent.id if payment_intent else None,
            stripe_invoice_id=invoice.id if invoice else None,
            status="pending",
            payment_method="card",
            description=f"{plan.name} membership"
        )
        logger.info(f"Created Stripe subscription {stripe_sub.id} for user {user.id}, payment {payment.id}")

        return {
            "status": "success",
            "subscription_id": stripe_sub.id,
            "payment_id": payment.id,
            "client_secret": payment_intent.client_secret if payment_intent else None,
        }

    def handle_webhook(self, payload: bytes, signature: str) -> dict:
        """Handle Stripe webhook events."""
        webhook_secret = os.environ.get("STRIPE_WEBHOOK_SECRET")
        if not webhook_secret:
            raise ServiceUnavailableError("Stripe webhook secret not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except ValueError:
            raise ValidationError("Invalid payload")
        except stripe.SignatureVerificationError:
            raise ValidationError("Invalid signature")

        # Handle the event
        if event.type == "invoice.payment_succeeded":
            self._handle_payment_succeeded(event.data.object)
        elif event.type == "invoice.payment_failed":
            self._handle_payment_failed(event.data.object)
        elif event.type == "customer.subscription.deleted":
            self._handle_subscription_deleted(event.data.object)
        else:
            logger.debug(f"Ignoring Stripe event {event.type}")

        return {"status": "success"}

    def _find_payment(self, invoice):
        payment = self.storage.get_payment_by_invoice(invoice.id)
        intent_id = getattr(invoice, "payment_intent", None)
        if payment is None and intent_id:
            payment = self.storage.get_payment_by_intent(intent_id)
        return payment

    def _handle_payment_succeeded(self, invoice):
        payment = self._find_payment(invoice)
        if payment is None:
            logger.warning(f"No payment recorded for Stripe invoice {invoice.id}")
            return
        if payment.status == "completed":
            return

        plan = self.storage.get_plan(payment.plan_id)
        membership = self.memberships.activate_plan(payment.user_id, plan)
        self.storage.update_payment(
            payment.id,
            status="completed",
            membership_id=membership.id,
            amount=from_minor_units(invoice.amount_paid, invoice.currency),
            currency=invoice.currency
        )
        self.notifications.create_notification(
            payment.user_id, "membership", "Payment received",
            f"Thanks! Your {plan.name} membership is active until {membership.end_date[:10]}.",
            related_id=membership.id
        )
        logger.info(f"Payment {payment.id} completed from webhook, membership {membership.id}")

    def _handle_payment_failed(self, invoice):
        payment = self._find_payment(invoice)
        if payment is None:
            return
        self.storage.update_payment(payment.id, status="failed")
        self.notifications.create_notification(
            payment.user_id, "payment", "Payment failed",
            "We couldn't process your membership payment. Please update your card.", related_id=payment.id
        )
        logger.info(f"Payment {payment.id} failed from webhook")

    def _handle_subscription_deleted(self, stripe_sub):
        user_id = getattr(getattr(stripe_sub, "metadata", None), "user_id", None)
        if not user_id:
            return
        count = self.storage.cancel_active_memberships(user_id)
        self.storage.update_user(user_id, stripe_subscription_id=None)
        logger.info(f"Stripe subscription {stripe_sub.id} deleted, cancelled {count} membership(s)")

    def payment_history(self, user_id: str, limit: int = 50) -> List[dict]:
        return [row_to_dict(p) for p in self.storage.list_user_payments(user_id, limit)]


# Singleton instance
payment_service = PaymentService(get_storage(), get_membership_service(), get_notification_service())

def get_payment_service() -> PaymentService:
    return payment_service
