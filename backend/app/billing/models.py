"""Domain models for the billing webhook reconciliation core."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BillingEventType(str, Enum):
    """Primary webhook event types that the application reacts to."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_CANCELLATION_SCHEDULED = "subscription_cancellation_scheduled"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    INVOICE_GENERATED = "invoice_generated"
    PAYMENT_SUCCEEDED = "payment_succeeded"


class AddonEventType(str, Enum):
    """Event types delivered to the add-on integration endpoint."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated"
    PAYMENT_FAILED = "payment_failed"


class BillingModel(str, Enum):
    """How a mapped price is charged."""

    MONTHLY = "monthly"
    ONE_TIME = "one_time"


class SubscriptionStatus(str, Enum):
    """Subscription state stored on the user account."""

    ACTIVE = "active"
    CANCELLED = "cancelled"


class AddonStatus(str, Enum):
    """Lifecycle status of an add-on record."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    GRACE_PERIOD = "grace_period"


class LineItemEntityType(str, Enum):
    """Invoice line item tags that can reference a mapped price."""

    PLAN_ITEM_PRICE = "plan_item_price"
    CHARGE_ITEM_PRICE = "charge_item_price"


class WebhookOutcomeStatus(str, Enum):
    """Result classification for a processed webhook delivery."""

    PROCESSED = "processed"
    IGNORED = "ignored"
    UNHANDLED_EVENT = "unhandled_event"
    USER_NOT_FOUND = "user_not_found"
    UNKNOWN_PLAN_ID = "unknown_plan_id"
    PROCESSING_ERROR = "processing_error"


FREE_PLAN_CODE = "free"
PAID_INVOICE_STATUS = "paid"


def _from_timestamp(value: object) -> Optional[datetime]:
    """Convert provider unix timestamps (seconds) into aware datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported timestamp value")


class ProviderCustomer(BaseModel):
    """Customer object as delivered by the billing provider."""

    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class SubscriptionItem(BaseModel):
    item_price_id: Optional[str] = None
    item_type: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[int] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class ProviderSubscription(BaseModel):
    """Subscription object as delivered by the billing provider."""

    id: str
    status: Optional[str] = None
    customer_id: Optional[str] = None
    plan_id: Optional[str] = None
    plan_quantity: Optional[int] = None
    plan_unit_price: Optional[int] = None
    subscription_items: List[SubscriptionItem] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    current_term_start: Optional[datetime] = None
    current_term_end: Optional[datetime] = None
    next_billing_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator(
        "started_at",
        "current_term_start",
        "current_term_end",
        "next_billing_at",
        mode="before",
    )
    @classmethod
    def _parse_timestamps(cls, value: object) -> Optional[datetime]:
        return _from_timestamp(value)

    def plan_item_price_id(self) -> Optional[str]:
        """Return the price id of the plan item, falling back to the legacy plan id."""

        for item in self.subscription_items:
            if item.item_type == "plan" and item.item_price_id:
                return item.item_price_id
        return self.plan_id


class InvoiceLineItem(BaseModel):
    id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[int] = None
    quantity: Optional[int] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class ProviderInvoice(BaseModel):
    """Invoice object as delivered by the billing provider."""

    id: str
    status: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    recurring: Optional[bool] = None
    total: Optional[int] = None
    line_items: List[InvoiceLineItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def is_paid(self) -> bool:
        return self.status == PAID_INVOICE_STATUS

    @property
    def is_one_time(self) -> bool:
        """Return ``True`` only when the provider marks the invoice as non-recurring."""
        return self.recurring is False


class ProviderPayment(BaseModel):
    """Payment or transaction object attached to a payment confirmation."""

    id: Optional[str] = None
    customer_id: Optional[str] = None
    amount: Optional[int] = None
    status: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)


class WebhookContent(BaseModel):
    subscription: Optional[ProviderSubscription] = None
    customer: Optional[ProviderCustomer] = None
    invoice: Optional[ProviderInvoice] = None
    payment: Optional[ProviderPayment] = None
    transaction: Optional[ProviderPayment] = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def payment_record(self) -> Optional[ProviderPayment]:
        """Return the payment section, accepting the provider's ``transaction`` key."""
        return self.payment or self.transaction


class WebhookEvent(BaseModel):
    """Normalized webhook delivery. Not persisted."""

    id: Optional[str] = None
    event_type: str
    occurred_at: Optional[datetime] = None
    content: WebhookContent = Field(default_factory=WebhookContent)

    model_config = ConfigDict(frozen=True)

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _parse_occurred_at(cls, value: object) -> Optional[datetime]:
        return _from_timestamp(value)


class UserAccount(BaseModel):
    """Billing-relevant view of a user account row."""

    id: int
    email: str
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    plan_code: str = FREE_PLAN_CODE
    renewable_credits: int = Field(default=0, ge=0)
    payasyougo_credits: int = Field(default=0, ge=0)
    extra_context_slots: int = Field(default=0, ge=0)
    subscription_status: Optional[SubscriptionStatus] = None
    provider_subscription_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    subscription_started_at: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    cancellation_scheduled_at: Optional[datetime] = None
    cancellation_effective_date: Optional[datetime] = None
    previous_plan_code: Optional[str] = None
    welcome_email_sent: bool = False

    model_config = ConfigDict(frozen=True)


class AddonRecord(BaseModel):
    """Add-on capacity purchase. Slot count is never decremented."""

    id: Optional[int] = None
    user_id: int
    slots: int = Field(default=1, ge=1)
    provider_subscription_id: Optional[str] = None
    provider_invoice_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    price: Optional[float] = None
    billing_model: BillingModel = BillingModel.MONTHLY
    status: AddonStatus = AddonStatus.ACTIVE
    provider_status: Optional[str] = None
    billing_period_start: Optional[datetime] = None
    billing_period_end: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class PendingRegistration(BaseModel):
    """Sign-up started before payment, completed by the first grant."""

    user_id: int
    profile_url: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class NotificationResult(BaseModel):
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class WebhookOutcome(BaseModel):
    """Classification of how a webhook delivery was handled."""

    event_type: str
    status: WebhookOutcomeStatus
    user_id: Optional[int] = None
    detail: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def granted(self) -> bool:
        return self.status == WebhookOutcomeStatus.PROCESSED
