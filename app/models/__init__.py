from .audit import AuditLog
from .billing_totals import BillingTotals
from .error_log import ErrorLog
from .notification import Notification
from .payment import PaymentRecord
from .plan import Plan
from .security_log import SecurityLog
from .subscription import Subscription
from .user import User

__all__ = [
    "AuditLog",
    "BillingTotals",
    "ErrorLog",
    "Notification",
    "PaymentRecord",
    "Plan",
    "SecurityLog",
    "Subscription",
    "User",
]
