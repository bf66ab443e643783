"""FastAPI routes for the commerce domain."""

import json
import os

from fastapi import APIRouter, Header, HTTPException
from protean.utils.globals import current_domain

from commerce.api.schemas import (
    BulkOperationRequest,
    BulkOperationResponse,
    CancellationResponse,
    CancelPaymentRequest,
    ConfigureGatewayRequest,
    ConfigureRefundPolicyRequest,
    CreateAutomationRuleRequest,
    DownloadRequest,
    DownloadResponse,
    FireTriggerRequest,
    GatewayConfigResponse,
    InitiatePaymentSessionRequest,
    LicenseActivationRequest,
    LicenseActivationResponse,
    PaymentResultResponse,
    PaymentSessionResponse,
    RefundResponse,
    RequestCancellationRequest,
    RequestRefundRequest,
    ReviewRequest,
    RuleIdResponse,
    RunJobsRequest,
    SubmitManualPaymentRequest,
    ToggleAutomationRuleRequest,
    VerifyPaymentRequest,
)
from commerce.automation.engine import (
    CreateAutomationRule,
    FireAutomationTrigger,
    ProcessDueActions,
    RunTimeBasedRules,
    ToggleAutomationRule,
)
from commerce.bulk.operations import RunBulkOperation
from commerce.entitlement.access import ActivateLicense, DeactivateLicense, RequestDownload
from commerce.gateway.fake_adapter import FakeGateway
from commerce.payment.initiation import InitiatePaymentSession, RetryPaymentSession
from commerce.payment.manual import ReviewManualPayment, SubmitManualPayment
from commerce.payment.verification import CancelPayment, ReconcilePayments, verify_payment
from commerce.projections.refund_stats import current_stats
from commerce.refund.cancellation import RequestCancellation, ReviewCancellation
from commerce.refund.execution import ExecuteRefund, ReconcileRefunds, ResubmitRefund
from commerce.refund.policy import ConfigureRefundPolicy
from commerce.refund.requests import RequestRefund, ReviewRefund, refund_summary
from commerce.services import collaborators


def _process(command):
    return current_domain.process(command, asynchronous=False)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/sessions", status_code=201, response_model=PaymentSessionResponse)
async def initiate_session(body: InitiatePaymentSessionRequest) -> PaymentSessionResponse:
    """Create (or reuse) an order and open a gateway checkout session for it."""
    items = json.dumps([item.model_dump(exclude_none=True) for item in body.items]) if body.items else None
    command = InitiatePaymentSession(
        customer_id=body.customer_id,
        cart_id=body.cart_id,
        items=items,
        order_id=body.order_id,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        coupon_code=body.coupon_code,
        coupon_discount=body.coupon_discount,
        tax=body.tax,
        shipping=body.shipping,
        currency=body.currency,
    )
    return PaymentSessionResponse(**_process(command))


@payment_router.post("/{payment_id}/retry", status_code=201, response_model=PaymentSessionResponse)
async def retry_session(payment_id: str) -> PaymentSessionResponse:
    """Open a new session for a failed or cancelled payment."""
    return PaymentSessionResponse(**_process(RetryPaymentSession(payment_id=payment_id)))


@payment_router.post("/callback", response_model=PaymentResultResponse)
async def payment_callback(
    body: VerifyPaymentRequest,
    x_gateway_signature: str = Header(default=""),
) -> PaymentResultResponse:
    """Gateway success callback. Verification runs against the gateway, never the payload alone."""
    gateway = collaborators().gateway
    if not gateway.verify_callback_signature(json.dumps(body.model_dump()), x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid callback signature")

    return PaymentResultResponse(**verify_payment(body.transaction_id, body.payload))


@payment_router.post("/cancel", response_model=PaymentResultResponse)
async def cancel_payment(body: CancelPaymentRequest) -> PaymentResultResponse:
    """Gateway cancel/fail redirect, or a customer abandoning checkout."""
    return PaymentResultResponse(**_process(CancelPayment(transaction_id=body.transaction_id, reason=body.reason)))


@payment_router.post("/reconcile")
async def reconcile_payments() -> dict:
    """Re-verify payments whose gateway outcome is unknown."""
    return _process(ReconcilePayments())


@payment_router.post("/manual", status_code=201)
async def submit_manual_payment(body: SubmitManualPaymentRequest) -> dict:
    """Record an offline payment for admin review."""
    return _process(SubmitManualPayment(**body.model_dump()))


@payment_router.put("/manual/{payment_id}/review")
async def review_manual_payment(payment_id: str, body: ReviewRequest) -> dict:
    return _process(
        ReviewManualPayment(
            payment_id=payment_id,
            action=body.action,
            reviewed_by=body.reviewed_by,
            reason=body.reason,
        )
    )


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = collaborators().gateway
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        verify_outcome=body.verify_outcome,
        refund_outcome=body.refund_outcome,
        failure_reason=body.failure_reason,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        verify_outcome=gateway.verify_outcome,
        refund_outcome=gateway.refund_outcome,
        failure_reason=gateway.failure_reason,
    )


# ---------------------------------------------------------------------------
# Order Router: entitlements and refund history
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("/{order_id}/downloads/{product_id}", response_model=DownloadResponse)
async def request_download(order_id: str, product_id: str, body: DownloadRequest) -> DownloadResponse:
    command = RequestDownload(order_id=order_id, product_id=product_id, customer_id=body.customer_id)
    return DownloadResponse(**_process(command))


@order_router.get("/{order_id}/refunds")
async def order_refunds(order_id: str) -> dict:
    return refund_summary(order_id)


license_router = APIRouter(prefix="/licenses", tags=["licenses"])


@license_router.post("/activate", response_model=LicenseActivationResponse)
async def activate_license(body: LicenseActivationRequest) -> LicenseActivationResponse:
    command = ActivateLicense(license_key=body.license_key, device_id=body.device_id)
    return LicenseActivationResponse(**_process(command))


@license_router.post("/deactivate", response_model=LicenseActivationResponse)
async def deactivate_license(body: LicenseActivationRequest) -> LicenseActivationResponse:
    command = DeactivateLicense(license_key=body.license_key, device_id=body.device_id)
    return LicenseActivationResponse(**_process(command))


# ---------------------------------------------------------------------------
# Refund Router
# ---------------------------------------------------------------------------
refund_router = APIRouter(prefix="/refunds", tags=["refunds"])


@refund_router.post("", status_code=201, response_model=RefundResponse)
async def request_refund(body: RequestRefundRequest) -> RefundResponse:
    items = json.dumps([item.model_dump(exclude_none=True) for item in body.items]) if body.items else None
    command = RequestRefund(
        order_id=body.order_id,
        customer_id=body.customer_id,
        refund_type=body.refund_type,
        reason=body.reason,
        items=items,
        refund_method=body.refund_method,
    )
    return RefundResponse(**_process(command))


@refund_router.put("/{refund_id}/review", response_model=RefundResponse)
async def review_refund(refund_id: str, body: ReviewRequest) -> RefundResponse:
    command = ReviewRefund(
        refund_id=refund_id,
        action=body.action,
        reviewed_by=body.reviewed_by,
        reason=body.reason,
    )
    return RefundResponse(**_process(command))


@refund_router.post("/{refund_id}/execute", response_model=RefundResponse)
async def execute_refund(refund_id: str) -> RefundResponse:
    """Send an approved refund to the gateway (or settle it offline)."""
    return RefundResponse(**_process(ExecuteRefund(refund_id=refund_id)))


@refund_router.post("/{refund_id}/resubmit", response_model=RefundResponse)
async def resubmit_refund(refund_id: str) -> RefundResponse:
    return RefundResponse(**_process(ResubmitRefund(refund_id=refund_id)))


@refund_router.post("/reconcile")
async def reconcile_refunds() -> dict:
    return _process(ReconcileRefunds())


@refund_router.get("/stats")
async def refund_stats() -> dict:
    return current_stats()


@refund_router.put("/policies", response_model=dict)
async def configure_refund_policy(body: ConfigureRefundPolicyRequest) -> dict:
    policy_id = _process(ConfigureRefundPolicy(**body.model_dump()))
    return {"policy_id": policy_id, "product_type": body.product_type}


# ---------------------------------------------------------------------------
# Cancellation Router
# ---------------------------------------------------------------------------
cancellation_router = APIRouter(prefix="/cancellations", tags=["cancellations"])


@cancellation_router.post("", status_code=201, response_model=CancellationResponse)
async def request_cancellation(body: RequestCancellationRequest) -> CancellationResponse:
    return CancellationResponse(**_process(RequestCancellation(**body.model_dump())))


@cancellation_router.put("/{cancellation_id}/review", response_model=CancellationResponse)
async def review_cancellation(cancellation_id: str, body: ReviewRequest) -> CancellationResponse:
    command = ReviewCancellation(
        cancellation_id=cancellation_id,
        action=body.action,
        reviewed_by=body.reviewed_by,
        reason=body.reason,
    )
    return CancellationResponse(**_process(command))


# ---------------------------------------------------------------------------
# Admin Router: bulk operations and automation
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.post("/bulk-operations", response_model=BulkOperationResponse)
async def run_bulk_operation(body: BulkOperationRequest) -> BulkOperationResponse:
    """Apply one operation to a set of orders; all succeed or none are changed."""
    command = RunBulkOperation(
        operation=body.operation,
        order_ids=json.dumps(body.order_ids),
        params=json.dumps(body.params),
        performed_by=body.performed_by,
    )
    return BulkOperationResponse(**_process(command))


@admin_router.post("/automation/rules", status_code=201, response_model=RuleIdResponse)
async def create_automation_rule(body: CreateAutomationRuleRequest) -> RuleIdResponse:
    command = CreateAutomationRule(
        name=body.name,
        description=body.description,
        trigger_event=body.trigger_event,
        conditions=json.dumps(body.conditions),
        actions=json.dumps([action.model_dump() for action in body.actions]),
        is_active=body.is_active,
    )
    return RuleIdResponse(rule_id=_process(command))


@admin_router.put("/automation/rules/{rule_id}/active")
async def toggle_automation_rule(rule_id: str, body: ToggleAutomationRuleRequest) -> dict:
    return _process(ToggleAutomationRule(rule_id=rule_id, is_active=body.is_active))


@admin_router.post("/automation/fire")
async def fire_trigger(body: FireTriggerRequest) -> dict:
    command = FireAutomationTrigger(
        trigger_event=body.trigger_event,
        order_id=body.order_id,
        trigger_data=json.dumps(body.trigger_data),
    )
    return _process(command)


@admin_router.post("/automation/jobs/run")
async def process_due_jobs(body: RunJobsRequest) -> dict:
    """Run every deferred automation step whose time has come."""
    return _process(ProcessDueActions(as_of=body.as_of))


@admin_router.post("/automation/time-based/run")
async def run_time_based_rules(body: RunJobsRequest) -> dict:
    return _process(RunTimeBasedRules(as_of=body.as_of))
