"""
Payments API routes.

Initiation, browser callbacks, provider webhooks, verification and refunds.
Keep this thin: wire concerns only, provider details live in the adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from api.dependencies import get_payment_service
from api.middleware import ip_matches
from application.dtos.payments import (
    InboundRequest,
    InitiateOptions,
    InitiatePaymentRequest,
    RefundPaymentRequest,
    VerifyPaymentRequest,
)
from application.services.payment_service import PaymentApplicationService
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


router = APIRouter(prefix="/payment", tags=["Payments"])
logger = get_logger(__name__)


async def _inbound(request: Request) -> InboundRequest:
    body = await request.body()
    content_type = (request.headers.get("content-type") or "").lower()
    form: dict = {}
    if "application/x-www-form-urlencoded" in content_type and body:
        form = dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))
    accept = (request.headers.get("accept") or "").lower()
    return InboundRequest(
        method=request.method,
        headers=dict(request.headers.items()),
        query=dict(request.query_params),
        form=form,
        body=body,
        client_ip=_client_ip(request),
        wants_json=request.query_params.get("format") == "json" or "application/json" in accept,
    )


def _client_ip(request: Request) -> Optional[str]:
    ip = getattr(request.state, "client_ip", None)
    if ip:
        return ip
    return request.client.host if request.client else None


def _ip_permitted(remote_ip: Optional[str]) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    return ip_matches(remote_ip, allowlist)


@router.post("/{gateway}/initiate", summary="Start a payment attempt")
async def initiate_payment(
    gateway: str,
    payload: InitiatePaymentRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.initiate_payment(
        gateway,
        payload.order_id,
        InitiateOptions(return_url=payload.return_url, cancel_url=payload.cancel_url),
    )
    return success_response(data=result.model_dump(mode="json"), message=result.message or "Payment initiated")


@router.api_route("/{gateway}/callback", methods=["GET", "POST"], summary="Browser return from the provider")
async def payment_callback(
    gateway: str,
    request: Request,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    inbound = await _inbound(request)
    try:
        result = await service.handle_callback(gateway, inbound)
    except BusinessException as exc:
        if inbound.wants_json:
            raise
        logger.warning("payment_callback_rejected", provider=gateway, error=exc.message, code=int(exc.code))
        return RedirectResponse(payment_settings.frontend_url("failure"), status_code=303)

    if inbound.wants_json:
        return success_response(data=result.model_dump(mode="json"), message=result.message)

    if result.success:
        outcome = "success"
    elif result.payment_status == "pending":
        outcome = "pending"
    else:
        outcome = "failure"
    target = (result.cancel_url or result.return_url) if outcome == "failure" else result.return_url
    return RedirectResponse(payment_settings.frontend_url(outcome, result.order_id, target=target), status_code=303)


@router.post("/{gateway}/webhook", summary="Provider server-to-server notification")
async def payment_webhook(
    gateway: str,
    request: Request,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    inbound = await _inbound(request)
    if not _ip_permitted(inbound.client_ip):
        logger.warning("webhook_ip_not_allowed", provider=gateway, client_ip=inbound.client_ip)
        raise BusinessException(
            message="Webhook source address not allowed",
            code=BusinessCode.FORBIDDEN,
            error_type="WebhookForbidden",
        )

    try:
        result = await service.handle_webhook(gateway, inbound)
    except BusinessException as exc:
        if not service.webhook_always_acknowledged(gateway):
            raise
        # the provider retries on anything but 200; the failure stays visible in logs only
        logger.error(
            "payment_webhook_failed",
            provider=gateway,
            error=exc.message,
            code=int(exc.code),
            exc_info=True,
        )
        return success_response(data={"handled": False}, message="Webhook received")

    return success_response(data=result.model_dump(mode="json"), message=result.message or "Webhook processed")


@router.post("/verify", summary="Poll the provider for the attempt status")
async def verify_payment(
    payload: VerifyPaymentRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.verify_payment(payload.payment_id)
    return success_response(data=result.model_dump(mode="json"), message="Payment verified")


@router.post("/refund", summary="Refund a completed payment")
async def refund_payment(
    payload: RefundPaymentRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.refund_payment(payload.payment_id, payload.amount, reason=payload.reason)
    return success_response(data=result.model_dump(mode="json"), message=result.message or "Refund processed")


@router.get("/status/{order_id}", summary="Order payment status and attempts")
async def payment_status(
    order_id: int,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    summary = await service.get_payment_status(order_id)
    return success_response(data=summary.model_dump(mode="json"))


@router.get("/gateways", summary="Providers applicable to an amount")
async def available_gateways(
    amount: Decimal = Query(..., gt=0),
    currency: str = Query(default=payment_settings.default_currency, min_length=3, max_length=3),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    listings = await service.available_gateways(amount, currency.upper())
    return success_response(data=[item.model_dump(mode="json") for item in listings])


@router.post("/cod/{payment_id}/delivered", summary="Confirm cash collected on delivery")
async def cod_delivered(
    payment_id: int,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.mark_delivered(payment_id)
    return success_response(data=result.model_dump(mode="json"), message="Delivery recorded")


@router.post("/cache/clear", summary="Drop cached gateway configuration")
async def clear_gateway_cache(service: PaymentApplicationService = Depends(get_payment_service)):
    service.clear_cache()
    return success_response(message="Gateway cache cleared")
