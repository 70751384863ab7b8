"""
Dues Service Data Models

Pydantic models for memberships, payments, payer assignment, onboarding
invites and the overdue sweep.
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field


# ====================
# Enum Types
# ====================

class MembershipStatus(str, Enum):
    """Persisted membership lifecycle status"""
    PENDING = "pending"
    AWAITING_SIGNATURE = "awaiting_signature"
    WAITING_PERIOD = "waiting_period"
    ACTIVE = "active"
    LAPSED = "lapsed"
    CANCELLED = "cancelled"


class MembershipStanding(str, Enum):
    """Coarse standing derived from the lifecycle status"""
    PENDING = "pending"
    CURRENT = "current"
    LAPSED = "lapsed"
    CANCELLED = "cancelled"


class EnrollmentFeeStatus(str, Enum):
    """Enrollment fee state"""
    UNPAID = "unpaid"
    PAID = "paid"
    WAIVED = "waived"


class BillingFrequency(str, Enum):
    """Dues billing frequency"""
    MONTHLY = "monthly"
    BIANNUAL = "biannual"
    ANNUAL = "annual"


class PaymentType(str, Enum):
    """What a payment pays for"""
    ENROLLMENT_FEE = "enrollment_fee"
    DUES = "dues"
    BACK_DUES = "back_dues"


class PaymentMethod(str, Enum):
    """How a payment was made"""
    STRIPE = "stripe"
    CASH = "cash"
    CHECK = "check"
    ZELLE = "zelle"

    @property
    def is_manual(self) -> bool:
        return self != PaymentMethod.STRIPE


class PaymentStatus(str, Enum):
    """Payment status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class InviteStatus(str, Enum):
    """Onboarding invite status"""
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class InvitePaymentMethod(str, Enum):
    """How an onboarding invite collects its first payments"""
    STRIPE = "stripe"
    MANUAL = "manual"


class OnboardingStep(str, Enum):
    """Steps of the onboarding orchestration"""
    ONBOARDING_INVITE = "onboarding_invite"
    PAYMENT_SETUP = "payment_setup"
    WELCOME_EMAIL = "welcome_email"
    AGREEMENT_EMAIL = "agreement_email"


class StepStatus(str, Enum):
    """Outcome of one orchestration step"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorType(str, Enum):
    """Failure categories reported on responses"""
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    EXTERNAL_SERVICE = "external_service"
    PERSISTENCE = "persistence"
    ROLLED_BACK = "rolled_back"
    COMPENSATION_FAILED = "compensation_failed"
    INTERNAL = "internal"


class PayerAssignmentMode(str, Enum):
    """Which path the payer saga took"""
    SUBSCRIPTION_CREATED = "subscription_created"
    PAYMENT_LINK_SENT = "payment_link_sent"


# ====================
# Core Models
# ====================

class BillingConfig(BaseModel):
    """Per-organization billing policy"""
    eligibility_months: int = Field(default=60, ge=1)
    lapse_days: int = Field(default=7, ge=0)
    cancel_months: int = Field(default=24, ge=1)
    reminder_schedule: List[int] = Field(default_factory=lambda: [3, 7, 14])
    max_reminders: int = Field(default=3, ge=0)
    send_invoice_reminders: bool = True

    @classmethod
    def merged(
        cls,
        overrides: Optional[Dict[str, Any]],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> "BillingConfig":
        """Overlay stored organization overrides on the defaults"""
        values: Dict[str, Any] = dict(defaults or {})
        for key, value in (overrides or {}).items():
            if value is not None and key in cls.model_fields:
                values[key] = value
        return cls(**values)


class PaymentMethodDetails(BaseModel):
    """Card on file summary"""
    payment_method_id: Optional[str] = None
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None


class PlanPricing(BaseModel):
    """Dues price per billing frequency, in dollars"""
    monthly: Decimal = Decimal("0")
    biannual: Decimal = Decimal("0")
    annual: Decimal = Decimal("0")


class Plan(BaseModel):
    """Membership plan"""
    plan_id: str
    organization_id: str
    name: str
    pricing: PlanPricing
    enrollment_fee: Decimal = Decimal("0")
    is_active: bool = True


class Organization(BaseModel):
    """Organization running a dues program"""
    organization_id: str
    name: str
    timezone: str = "America/New_York"
    active: bool = True
    pass_fees_to_member: bool = False
    platform_fees: Dict[str, Decimal] = Field(default_factory=dict)
    billing_config: Dict[str, Any] = Field(default_factory=dict)


class Member(BaseModel):
    """Member of an organization"""
    member_id: str
    organization_id: str
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    email: Optional[str] = None
    preferred_language: str = "en"

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)


class Membership(BaseModel):
    """Membership aggregate"""
    membership_id: str
    organization_id: str
    member_id: str
    plan_id: str
    status: MembershipStatus = MembershipStatus.PENDING
    paid_months: int = Field(default=0, ge=0)
    enrollment_fee_status: EnrollmentFeeStatus = EnrollmentFeeStatus.UNPAID
    billing_frequency: BillingFrequency = BillingFrequency.MONTHLY
    billing_anniversary_day: int = Field(default=1, ge=1, le=28)
    join_date: Optional[date] = None
    next_payment_due: Optional[date] = None
    last_payment_date: Optional[date] = None
    eligible_date: Optional[date] = None
    cancelled_date: Optional[date] = None
    agreement_signed_at: Optional[datetime] = None
    payer_member_id: Optional[str] = None
    auto_pay_enabled: bool = False
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None
    payment_method_details: Optional[PaymentMethodDetails] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def enrollment_fee_paid(self) -> bool:
        return self.enrollment_fee_status != EnrollmentFeeStatus.UNPAID

    @property
    def agreement_signed(self) -> bool:
        return self.agreement_signed_at is not None

    @property
    def has_card_on_file(self) -> bool:
        return bool(
            self.auto_pay_enabled
            and self.payment_method_details
            and self.stripe_customer_id
        )

    @property
    def has_active_subscription(self) -> bool:
        return bool(
            self.stripe_subscription_id
            and self.subscription_status in ("active", "trialing")
        )


class Payment(BaseModel):
    """Payment or pending invoice (append-only)"""
    payment_id: str
    organization_id: str
    membership_id: str
    member_id: str
    type: PaymentType
    method: Optional[PaymentMethod] = None
    status: PaymentStatus = PaymentStatus.PENDING
    amount: Decimal
    stripe_fee: Decimal = Decimal("0")
    platform_fee: Decimal = Decimal("0")
    total_charged: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")
    months_credited: int = Field(default=0, ge=0)
    check_number: Optional[str] = None
    zelle_transaction_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    invoice_number: Optional[str] = None
    due_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    period_label: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    reminder_count: int = 0
    reminder_sent_at: Optional[datetime] = None
    reminders_paused: bool = False
    requires_review: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OnboardingInvite(BaseModel):
    """First enrollment-fee and dues collection for a new membership"""
    invite_id: str
    organization_id: str
    membership_id: str
    member_id: str
    payment_method: InvitePaymentMethod
    status: InviteStatus = InviteStatus.PENDING
    includes_enrollment_fee: bool = False
    enrollment_fee_amount: Decimal = Decimal("0")
    dues_amount: Decimal = Decimal("0")
    billing_frequency: BillingFrequency = BillingFrequency.MONTHLY
    enrollment_fee_paid_at: Optional[datetime] = None
    dues_paid_at: Optional[datetime] = None
    stripe_setup_session_id: Optional[str] = None
    payment_url: Optional[str] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_fully_paid(self) -> bool:
        if self.includes_enrollment_fee and self.enrollment_fee_paid_at is None:
            return False
        return self.dues_paid_at is not None


# ====================
# Processor Results
# ====================

class SubscriptionResult(BaseModel):
    """Subscription created at the payment processor"""
    subscription_id: str
    status: str
    customer_id: str


class SetupSession(BaseModel):
    """Hosted card-setup session at the payment processor"""
    session_id: str
    url: str


class FeeBreakdown(BaseModel):
    """Processor fee calculation, all values in cents"""
    base_amount: int
    platform_fee: int
    stripe_fee: int
    charge_amount: int
    net_amount: int
    application_fee: int
    fees_passed_to_member: bool = False


class BillingCalculation(BaseModel):
    """Effect of a payment on a membership, without persisting"""
    membership_id: str
    payment_type: PaymentType
    months_credited: int
    current_paid_months: int
    new_paid_months: int
    current_status: MembershipStatus
    new_status: MembershipStatus
    status_changed: bool
    becomes_eligible: bool
    next_payment_due: Optional[date] = None
    expected_amount: Optional[Decimal] = None


class StatusTransition(BaseModel):
    """A status change applied by the overdue sweep"""
    membership_id: str
    organization_id: str
    from_status: MembershipStatus
    to_status: MembershipStatus
    reason: str


class SweepError(BaseModel):
    """A unit of work the sweep could not complete"""
    organization_id: Optional[str] = None
    membership_id: Optional[str] = None
    payment_id: Optional[str] = None
    error: str


class StepResult(BaseModel):
    """Outcome of one onboarding step"""
    status: StepStatus
    error: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


# ====================
# Request Models
# ====================

class RecordPaymentRequest(BaseModel):
    """Request to record a payment"""
    membership_id: str = Field(..., description="Membership being paid for")
    member_id: str = Field(..., description="Member who owns the membership")
    type: PaymentType
    method: PaymentMethod
    amount: Decimal = Field(..., description="Amount in dollars")
    months_credited: Optional[int] = Field(None, ge=0)
    check_number: Optional[str] = None
    zelle_transaction_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    pending_payment_id: Optional[str] = Field(None, description="Pending invoice to settle")
    organization_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class PreviewPaymentRequest(BaseModel):
    """Request to preview a payment's effect"""
    membership_id: str
    type: PaymentType = PaymentType.DUES
    months_credited: Optional[int] = Field(None, ge=0)


class AssignPayerRequest(BaseModel):
    """Request to assign a payer"""
    payer_member_id: str
    organization_id: Optional[str] = None


class ChangeFrequencyRequest(BaseModel):
    """Request to change billing frequency"""
    billing_frequency: BillingFrequency


class MarkAgreementSignedRequest(BaseModel):
    """Request to record the signed membership agreement"""
    signed_at: Optional[datetime] = None


class OverdueSweepRequest(BaseModel):
    """Request to run the overdue sweep"""
    as_of: Optional[date] = None


class RecordOnboardingPaymentRequest(BaseModel):
    """Request to record payments against an onboarding invite"""
    method: PaymentMethod
    recorded_by: Optional[str] = None
    enrollment_fee_paid: bool = False
    dues_paid: bool = False
    check_number: Optional[str] = None
    zelle_transaction_id: Optional[str] = None
    notes: Optional[str] = None


class OrchestrateOnboardingRequest(BaseModel):
    """Request to run the onboarding saga"""
    membership_id: str
    payment_method: InvitePaymentMethod = InvitePaymentMethod.MANUAL
    include_enrollment_fee: bool = True
    retry_step: Optional[OnboardingStep] = None


# ====================
# Response Models
# ====================

class MembershipView(BaseModel):
    """Membership with derived standing and display label"""
    membership: Membership
    standing: MembershipStanding
    status_label: str


class MembershipResponse(BaseModel):
    """Single membership response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    membership: Optional[MembershipView] = None


class RecordPaymentResponse(BaseModel):
    """Payment recording response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    payment: Optional[Payment] = None
    membership: Optional[Membership] = None
    status_changed: bool = False
    previous_status: Optional[MembershipStatus] = None
    new_status: Optional[MembershipStatus] = None
    became_eligible: bool = False
    settled_existing: bool = False
    warning: Optional[str] = None


class PreviewPaymentResponse(BaseModel):
    """Payment preview response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    calculation: Optional[BillingCalculation] = None


class AssignPayerResponse(BaseModel):
    """Payer assignment response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    mode: Optional[PayerAssignmentMode] = None
    membership: Optional[Membership] = None
    subscription_id: Optional[str] = None
    compensated: Optional[bool] = None
    payment_link_sent: bool = False
    payment_url: Optional[str] = None
    payer_email: Optional[str] = None


class RemovePayerResponse(BaseModel):
    """Payer removal response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    membership: Optional[Membership] = None
    subscription_cancelled: bool = False


class SwitchToManualResponse(BaseModel):
    """Switch from processor auto-pay to manual payments"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    membership: Optional[Membership] = None
    already_manual: bool = False
    subscription_cancelled: bool = False
    previous_subscription_id: Optional[str] = None
    warning: Optional[str] = None


class OverdueReportEntry(BaseModel):
    membership: Membership
    days_overdue: int


class OverdueReportResponse(BaseModel):
    """Memberships past due beyond the grace period"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    as_of: Optional[date] = None
    grace_days: int = 0
    count: int = 0
    entries: List[OverdueReportEntry] = Field(default_factory=list)


class ApproachingEligibilityEntry(BaseModel):
    membership: Membership
    months_remaining: int


class ApproachingEligibilityResponse(BaseModel):
    """Memberships within a few months of the eligibility threshold"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    min_months: int = 0
    eligibility_months: int = 0
    count: int = 0
    entries: List[ApproachingEligibilityEntry] = Field(default_factory=list)


class ChangeFrequencyResponse(BaseModel):
    """Billing frequency change response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    previous_frequency: Optional[BillingFrequency] = None
    new_frequency: Optional[BillingFrequency] = None
    next_payment_due: Optional[date] = None


class OverdueSweepResponse(BaseModel):
    """Overdue sweep summary"""
    success: bool = True
    message: str = "Overdue sweep completed"
    as_of: date
    organizations_processed: int = 0
    processed: int = 0
    transitioned: List[StatusTransition] = Field(default_factory=list)
    invoices_created: int = 0
    reminders_sent: int = 0
    flagged_for_review: int = 0
    errors: List[SweepError] = Field(default_factory=list)


class OnboardingInviteResponse(BaseModel):
    """Onboarding invite response"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    invite: Optional[OnboardingInvite] = None
    created: bool = False
    completed: bool = False
    payments: List[Payment] = Field(default_factory=list)


class OrchestrateOnboardingResponse(BaseModel):
    """Onboarding saga response with per-step results"""
    success: bool
    message: str
    error_type: Optional[ErrorType] = None
    invite: Optional[OnboardingInvite] = None
    steps: Dict[str, StepResult] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ServiceInfo(BaseModel):
    """Service information"""
    service: str
    version: str
    description: str
    capabilities: List[str]
