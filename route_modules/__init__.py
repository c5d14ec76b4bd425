"""
Routes package - organized API routes.

This package provides modular route definitions.
Import the combined router for use in main.py.
"""
from fastapi import APIRouter

from .auth_routes import router as auth_router
from .member_routes import router as member_router
from .checkin_routes import router as checkin_router
from .class_routes import router as class_router
from .trainer_routes import router as trainer_router
from .payment_routes import router as payment_router
from .notification_routes import router as notification_router
from .admin_routes import router as admin_router

# Combined router that includes all sub-routers
combined_router = APIRouter()
combined_router.include_router(auth_router, tags=["auth"])
combined_router.include_router(member_router, tags=["member"])
combined_router.include_router(checkin_router, tags=["checkin"])
combined_router.include_router(class_router, tags=["classes"])
combined_router.include_router(trainer_router, tags=["trainers"])
combined_router.include_router(payment_router, tags=["payments"])
combined_router.include_router(notification_router, tags=["notifications"])
combined_router.include_router(admin_router, tags=["admin"])

__all__ = [
    'combined_router', 'auth_router', 'member_router', 'checkin_router', 'class_router',
    'trainer_router', 'payment_router', 'notification_router', 'admin_router'
]
