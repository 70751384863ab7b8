"""
Dues Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import date
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol

from .models import (
    BillingFrequency,
    ErrorType,
    Member,
    Membership,
    OnboardingInvite,
    Organization,
    Payment,
    PaymentMethodDetails,
    Plan,
    SetupSession,
    SubscriptionResult,
)


# ====================
# Repository Protocols
# ====================


class DuesUnitOfWorkProtocol(Protocol):
    """Writes staged inside one database transaction"""

    async def get_membership_for_update(self, membership_id: str) -> Optional[Membership]:
        """Read and row-lock a membership"""
        ...

    async def get_payment_for_update(self, payment_id: str) -> Optional[Payment]:
        """Read and row-lock a payment"""
        ...

    async def find_pending_dues_payment(self, membership_id: str) -> Optional[Payment]:
        """Oldest pending dues invoice for a membership"""
        ...

    async def insert_payment(self, payment: Payment) -> Payment:
        """Insert a payment row"""
        ...

    async def update_payment(self, payment_id: str, fields: Dict[str, Any]) -> Payment:
        """Update mutable payment fields"""
        ...

    async def update_membership(
        self,
        membership_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Membership:
        """Update membership fields, bumping its version"""
        ...


class DuesRepositoryProtocol(Protocol):
    """Protocol for dues data repository"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    def transaction(self) -> AsyncContextManager[DuesUnitOfWorkProtocol]:
        """Open a transaction; commits on clean exit, rolls back on error"""
        ...

    # Reads
    async def get_membership(self, membership_id: str) -> Optional[Membership]:
        """Get membership by ID"""
        ...

    async def get_membership_by_member(self, member_id: str) -> Optional[Membership]:
        """Get the most recent non-cancelled membership of a member"""
        ...

    async def list_memberships_paid_by(self, payer_member_id: str) -> List[Membership]:
        """Memberships whose dues are paid by the given member"""
        ...

    async def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID"""
        ...

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        """Get plan by ID"""
        ...

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        """Get organization by ID"""
        ...

    async def list_active_organizations(self) -> List[Organization]:
        """Organizations whose dues program is active"""
        ...

    async def list_billable_memberships(self, organization_id: str) -> List[Membership]:
        """Memberships in waiting_period, active or lapsed status"""
        ...

    async def list_overdue_memberships(self, organization_id: str, due_before: date) -> List[Membership]:
        """Billable memberships with next_payment_due before a date"""
        ...

    async def list_approaching_eligibility(
        self,
        organization_id: str,
        min_months: int,
        eligibility_months: int,
        limit: int = 100,
    ) -> List[Membership]:
        """Memberships just short of the eligibility threshold"""
        ...

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        """Get payment by ID"""
        ...

    async def list_payments(self, membership_id: str) -> List[Payment]:
        """Payments of a membership, newest first"""
        ...

    async def find_dues_invoice(self, membership_id: str, due_date: date) -> Optional[Payment]:
        """Pending or completed dues payment for a due date"""
        ...

    async def list_reminder_candidates(self, organization_id: str) -> List[Payment]:
        """Pending/failed payments with a due date, not paused or under review"""
        ...

    # Single-row writes (own transaction)
    async def insert_payment(self, payment: Payment) -> Payment:
        """Insert a payment row"""
        ...

    async def update_payment(self, payment_id: str, fields: Dict[str, Any]) -> Payment:
        """Update mutable payment fields"""
        ...

    async def update_membership(
        self,
        membership_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Membership:
        """Update membership guarded by optimistic version"""
        ...

    # Onboarding invites
    async def get_invite(self, invite_id: str) -> Optional[OnboardingInvite]:
        """Get onboarding invite by ID"""
        ...

    async def get_pending_invite(self, membership_id: str) -> Optional[OnboardingInvite]:
        """Pending invite for a membership"""
        ...

    async def create_invite(self, invite: OnboardingInvite) -> OnboardingInvite:
        """Insert an onboarding invite"""
        ...

    async def update_invite(self, invite_id: str, fields: Dict[str, Any]) -> OnboardingInvite:
        """Update an onboarding invite"""
        ...


# ====================
# Collaborator Protocols
# ====================


class PaymentProcessorProtocol(Protocol):
    """Protocol for the card payment processor"""

    async def get_or_create_customer(
        self,
        email: str,
        name: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """ID of the customer with this email, created when missing"""
        ...

    async def get_default_payment_method(self, customer_id: str) -> Optional[PaymentMethodDetails]:
        """Default card of a customer, if any"""
        ...

    async def create_subscription(
        self,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        frequency: BillingFrequency,
        trial_end: Optional[date] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SubscriptionResult:
        """Create a recurring dues subscription"""
        ...

    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription immediately"""
        ...

    async def create_setup_session(
        self,
        customer_id: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SetupSession:
        """Create a hosted card-setup session"""
        ...


class EmailClientProtocol(Protocol):
    """Protocol for transactional email delivery"""

    async def send_email(
        self,
        template: str,
        recipient: str,
        variables: Dict[str, Any],
    ) -> bool:
        """Send a templated email; True when accepted for delivery"""
        ...


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish(self, subject: str, data: Dict[str, Any]) -> Any:
        """Publish event to NATS"""
        ...

    async def close(self) -> None:
        """Close event bus connection"""
        ...


# ====================
# Custom Exceptions
# ====================


class DuesServiceError(Exception):
    """Base exception for dues service errors"""
    error_type = ErrorType.INTERNAL


class NotFoundError(DuesServiceError):
    """Raised when a referenced entity does not exist"""
    error_type = ErrorType.NOT_FOUND


class MembershipNotFoundError(NotFoundError):
    """Raised when membership is not found"""
    pass


class MemberNotFoundError(NotFoundError):
    """Raised when member is not found"""
    pass


class PlanNotFoundError(NotFoundError):
    """Raised when plan is not found"""
    pass


class OrganizationNotFoundError(NotFoundError):
    """Raised when organization is not found"""
    pass


class PaymentNotFoundError(NotFoundError):
    """Raised when payment is not found"""
    pass


class InviteNotFoundError(NotFoundError):
    """Raised when onboarding invite is not found"""
    pass


class BillingValidationError(DuesServiceError):
    """Raised when a request violates a billing rule"""
    error_type = ErrorType.VALIDATION


class ExternalServiceError(DuesServiceError):
    """Raised when a collaborator (processor, email) call fails"""
    error_type = ErrorType.EXTERNAL_SERVICE

    def __init__(self, message: str, service: str = ""):
        super().__init__(message)
        self.service = service


class PersistenceError(DuesServiceError):
    """Raised when a database write fails"""
    error_type = ErrorType.PERSISTENCE


class ConcurrentModificationError(PersistenceError):
    """Raised when an optimistic version check fails"""

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None
    ):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class PayerAssignmentRolledBackError(PersistenceError):
    """Raised when a payer assignment was compensated after a failed write"""
    error_type = ErrorType.ROLLED_BACK
    compensated = True

    def __init__(self, message: str, subscription_id: str = ""):
        super().__init__(message)
        self.subscription_id = subscription_id


class PayerCompensationFailedError(PayerAssignmentRolledBackError):
    """Raised when the subscription created for a failed assignment could not be cancelled"""
    error_type = ErrorType.COMPENSATION_FAILED
    compensated = False


__all__ = [
    "DuesUnitOfWorkProtocol",
    "DuesRepositoryProtocol",
    "PaymentProcessorProtocol",
    "EmailClientProtocol",
    "EventBusProtocol",
    "DuesServiceError",
    "NotFoundError",
    "MembershipNotFoundError",
    "MemberNotFoundError",
    "PlanNotFoundError",
    "OrganizationNotFoundError",
    "PaymentNotFoundError",
    "InviteNotFoundError",
    "BillingValidationError",
    "ExternalServiceError",
    "PersistenceError",
    "ConcurrentModificationError",
    "PayerAssignmentRolledBackError",
    "PayerCompensationFailedError",
]
