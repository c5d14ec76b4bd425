"""
Payment Routes - membership plans, Stripe subscriptions and payment history.
"""
from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from typing import Optional
from auth import get_current_user, require_admin
from models import (
    MembershipPlanCreate, MembershipPlanUpdate, CreateSubscriptionRequest, AssignMembershipRequest
)
from service_modules.membership_service import MembershipService, get_membership_service
from service_modules.payment_service import PaymentService, get_payment_service

router = APIRouter()


# --- PUBLIC / MEMBER ---

@router.get("/api/membership-plans")
def get_membership_plans(service: MembershipService = Depends(get_membership_service)):
    """Active plans, public."""
    return service.list_plans()


@router.post("/api/create-subscription")
def create_subscription(
    data: CreateSubscriptionRequest,
    user = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Start a Stripe subscription; returns the client secret for the payment form."""
    return service.create_subscription(user, data.plan_id)


@router.post("/api/payment/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    service: PaymentService = Depends(get_payment_service)
):
    """Handle Stripe webhook events. The raw body is needed for signature verification."""
    payload = await request.body()
    return await run_in_threadpool(service.handle_webhook, payload, stripe_signature or "")


@router.get("/api/payments")
def get_my_payments(
    user = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    return service.payment_history(user.id)


# --- ADMIN: PLANS ---

@router.get("/api/admin/membership-plans")
def admin_get_plans(
    admin = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service)
):
    return service.list_plans(active_only=False)


@router.post("/api/admin/membership-plans")
def admin_create_plan(
    data: MembershipPlanCreate,
    admin = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service)
):
    return service.create_plan(data)


@router.put("/api/admin/membership-plans/{plan_id}")
def admin_update_plan(
    plan_id: str,
    data: MembershipPlanUpdate,
    admin = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service)
):
    return service.update_plan(plan_id, data)


@router.delete("/api/admin/membership-plans/{plan_id}")
def admin_delete_plan(
    plan_id: str,
    admin = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service)
):
    return service.deactivate_plan(plan_id)


# --- ADMIN: MEMBER MEMBERSHIPS ---

@router.post("/api/admin/members/{user_id}/membership")
def admin_assign_membership(
    user_id: str,
    data: AssignMembershipRequest,
    request: Request,
    admin = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service)
):
    """Replace the member's active membership with a new one."""
    return service.assign_membership(user_id, data, admin, request=request)


@router.delete("/api/admin/members/{user_id}/membership")
def admin_cancel_membership(
    user_id: str,
    request: Request,
    admin = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service)
):
    return service.cancel_membership(user_id, admin, request=request)
