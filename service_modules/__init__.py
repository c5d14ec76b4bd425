"""
Services package - organized service modules.

Each module exposes a service class, a singleton instance and a
get_*_service() helper for FastAPI dependency injection.
"""
from .auth_service import AuthService, auth_service, get_auth_service
from .checkin_service import CheckInService, checkin_service, get_checkin_service
from .class_service import ClassService, class_service, get_class_service
from .dashboard_service import DashboardService, dashboard_service, get_dashboard_service
from .member_service import MemberService, member_service, get_member_service
from .membership_service import MembershipService, membership_service, get_membership_service
from .messaging_service import MessagingService, messaging_service, get_messaging_service
from .notification_service import NotificationService, notification_service, get_notification_service
from .payment_service import PaymentService, payment_service, get_payment_service
from .trainer_service import TrainerService, trainer_service, get_trainer_service

__all__ = [
    'AuthService', 'auth_service', 'get_auth_service',
    'CheckInService', 'checkin_service', 'get_checkin_service',
    'ClassService', 'class_service', 'get_class_service',
    'DashboardService', 'dashboard_service', 'get_dashboard_service',
    'MemberService', 'member_service', 'get_member_service',
    'MembershipService', 'membership_service', 'get_membership_service',
    'MessagingService', 'messaging_service', 'get_messaging_service',
    'NotificationService', 'notification_service', 'get_notification_service',
    'PaymentService', 'payment_service', 'get_payment_service',
    'TrainerService', 'trainer_service', 'get_trainer_service',
]
