"""
Billing Exceptions

Custom exception classes for billing-related errors.
Each carries a machine-readable code so the API layer and batch reports can
tell lookup misses, guard violations and gateway failures apart.
"""


class BillingError(Exception):
    """
    Base exception for all billing-related errors.

    All billing exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    status_code: int = 400

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class MembershipAlreadyCurrentError(BillingError):
    """
    Raised when enrolment is attempted for a member whose membership is
    valid and already auto-renewing.
    """

    status_code = 409

    def __init__(self, message: str = "Membership is already active and renewing", details: dict = None):
        super().__init__(message=message, code="MEMBERSHIP_ALREADY_CURRENT", details=details)


class SubscriptionError(BillingError):
    """
    Raised for subscription-related errors.

    Examples:
    - No canonical subscription to act on
    - Subscription fully canceled (needs a new enrolment)
    - Status does not allow the requested transition
    """

    def __init__(self, message: str, code: str = "SUBSCRIPTION_ERROR", details: dict = None):
        super().__init__(message=message, code=code, details=details)


class PaymentError(BillingError):
    """
    Raised for payment processing errors.

    Examples:
    - Gateway request rejected
    - Setup intent not succeeded
    - No invoice left to retry
    """

    status_code = 402

    def __init__(self, message: str, code: str = "PAYMENT_ERROR", details: dict = None):
        super().__init__(message=message, code=code, details=details)


class CustomerNotFoundError(BillingError):
    """Raised when no gateway customer can be resolved for a member."""

    status_code = 404

    def __init__(self, email: str = None, customer_id: str = None):
        super().__init__(
            message="No billing customer found",
            code="CUSTOMER_NOT_FOUND",
            details={'email': email, 'customer_id': customer_id}
        )
        self.email = email
        self.customer_id = customer_id


class MemberNotFoundError(BillingError):
    """Raised when the member directory has no such member."""

    status_code = 404

    def __init__(self, member_id: str):
        super().__init__(
            message=f"Member not found: {member_id}",
            code="MEMBER_NOT_FOUND",
            details={'member_id': member_id}
        )
        self.member_id = member_id


class TierNotFoundError(BillingError):
    """Raised when a requested tier doesn't exist."""

    status_code = 404

    def __init__(self, tier_name: str):
        super().__init__(
            message=f"Tier not found: {tier_name}",
            code="TIER_NOT_FOUND",
            details={'tier_name': tier_name}
        )
        self.tier_name = tier_name


class WebhookError(BillingError):
    """Raised when a webhook payload cannot be verified or parsed."""

    def __init__(self, message: str, code: str = "WEBHOOK_ERROR", details: dict = None):
        super().__init__(message=message, code=code, details=details)
