"""Pydantic request/response schemas for the commerce API.

These are external contracts, kept separate from the Protean commands they
are translated into.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class LineItemSchema(BaseModel):
    product_id: str | None = None
    plan_id: str | None = None
    quantity: int = Field(default=1, ge=1)


class RefundItemSchema(BaseModel):
    ref: str
    quantity: int | None = Field(default=None, ge=1)
    amount: float | None = Field(default=None, gt=0)


class RuleActionSchema(BaseModel):
    type: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    delay_seconds: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class InitiatePaymentSessionRequest(BaseModel):
    customer_id: str
    cart_id: str | None = None
    items: list[LineItemSchema] | None = None
    order_id: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    coupon_code: str | None = None
    coupon_discount: float | None = Field(default=None, ge=0)
    tax: float = Field(default=0.0, ge=0)
    shipping: float = Field(default=0.0, ge=0)
    currency: str = "USD"

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "items": [{"product_id": "prod-001", "quantity": 2}],
                    "customer_email": "jane@example.com",
                    "tax": 2.5,
                }
            ]
        }
    }


class PaymentSessionResponse(BaseModel):
    session_id: str
    gateway_url: str
    transaction_id: str
    expires_at: str
    order_id: str
    payment_id: str


class VerifyPaymentRequest(BaseModel):
    transaction_id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class CancelPaymentRequest(BaseModel):
    transaction_id: str
    reason: str | None = None


class PaymentResultResponse(BaseModel):
    transaction_id: str
    payment_id: str
    order_id: str
    status: str
    already_processed: bool = False
    needs_reconciliation: bool | None = None
    failure_reason: str | None = None
    order_status: str | None = None


class SubmitManualPaymentRequest(BaseModel):
    order_id: str
    customer_id: str
    method: str
    sender_account: str | None = None
    reference_number: str | None = None
    note: str | None = None


class ReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    reviewed_by: str
    reason: str | None = None


class ConfigureGatewayRequest(BaseModel):
    verify_outcome: Literal["valid", "invalid", "timeout", "unavailable"] = "valid"
    refund_outcome: Literal["succeeded", "declined", "timeout", "unavailable"] = "succeeded"
    failure_reason: str = "Card declined"


class GatewayConfigResponse(BaseModel):
    gateway: str
    verify_outcome: str
    refund_outcome: str
    failure_reason: str


# ---------------------------------------------------------------------------
# Orders / entitlements
# ---------------------------------------------------------------------------
class DownloadRequest(BaseModel):
    customer_id: str


class DownloadResponse(BaseModel):
    url: str
    download_count: int
    remaining_downloads: int
    expires_at: str


class LicenseActivationRequest(BaseModel):
    license_key: str
    device_id: str


class LicenseActivationResponse(BaseModel):
    license_key: str
    activations: int
    max_activations: int


# ---------------------------------------------------------------------------
# Refunds and cancellations
# ---------------------------------------------------------------------------
class RequestRefundRequest(BaseModel):
    order_id: str
    customer_id: str
    refund_type: Literal["full", "partial"]
    reason: str = Field(min_length=1)
    items: list[RefundItemSchema] | None = None
    refund_method: str = "original_payment"


class RefundResponse(BaseModel):
    refund_id: str
    status: str
    amount: float | None = None
    gateway_refund_id: str | None = None
    fully_refunded: bool | None = None
    failure_reason: str | None = None


class ConfigureRefundPolicyRequest(BaseModel):
    product_type: Literal["digital", "physical", "subscription"]
    refund_window_days: int = Field(default=30, ge=0)
    allow_partial_refunds: bool = True
    auto_approve_threshold: float = Field(default=0.0, ge=0)
    requires_approval: bool = True
    is_active: bool = True


class RequestCancellationRequest(BaseModel):
    target: Literal["order", "subscription"]
    target_id: str
    customer_id: str
    reason: str = Field(min_length=1)
    cancellation_type: Literal["immediate", "end_of_period", "scheduled"] = "immediate"
    scheduled_date: datetime | None = None


class CancellationResponse(BaseModel):
    cancellation_id: str
    status: str
    refund_eligible: bool | None = None
    refund_amount: float | None = None
    refund_request_id: str | None = None


# ---------------------------------------------------------------------------
# Bulk operations and automation
# ---------------------------------------------------------------------------
class BulkOperationRequest(BaseModel):
    operation: Literal["update_status", "assign_priority", "bulk_cancel", "bulk_refund"]
    order_ids: list[str] = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    performed_by: str = "admin"


class BulkOperationResponse(BaseModel):
    operation: str
    processed: int
    order_ids: list[str]
    refund_request_ids: list[str]


class CreateAutomationRuleRequest(BaseModel):
    name: str
    description: str | None = None
    trigger_event: Literal["order_created", "payment_received", "status_changed", "time_based"]
    conditions: dict[str, Any] = Field(default_factory=dict)
    actions: list[RuleActionSchema] = Field(min_length=1)
    is_active: bool = True


class ToggleAutomationRuleRequest(BaseModel):
    is_active: bool


class FireTriggerRequest(BaseModel):
    trigger_event: Literal["order_created", "payment_received", "status_changed", "time_based"]
    order_id: str
    trigger_data: dict[str, Any] = Field(default_factory=dict)


class RunJobsRequest(BaseModel):
    as_of: datetime | None = None


class RuleIdResponse(BaseModel):
    rule_id: str
