"""Import every model so relationship names resolve and metadata is complete."""

from app.models.audit_log import AuditLog  # noqa: F401
from app.models.coupon import Coupon  # noqa: F401
from app.models.gift import Gift, GiftMedia  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.session import UserSession  # noqa: F401
from app.models.subscription import Subscription  # noqa: F401
from app.models.token import PasswordResetToken, VerificationToken  # noqa: F401
from app.models.user import User  # noqa: F401
