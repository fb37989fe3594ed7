import hashlib
import hmac
import json
import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from quimita import models, schemas
from quimita.auth import get_current_active_user
from quimita.errors import GatewayError, NotFoundError, TransientStoreError
from quimita.reconciliation import SubscriptionCoordinator, get_subscription_coordinator

router = APIRouter(prefix="/assinatura", tags=["subscription"])
webhook_router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)

MERCADOPAGO_WEBHOOK_SECRET = os.getenv("MERCADOPAGO_WEBHOOK_SECRET", "").strip()


@router.post("", response_model=schemas.CheckoutResponse)
def create_subscription(
    current_user: models.User = Depends(get_current_active_user),
    coordinator: SubscriptionCoordinator = Depends(get_subscription_coordinator),
):
    return {"init_point": coordinator.create(current_user)}


@router.post("/cancelar", response_model=schemas.CancelResponse)
def cancel_subscription(
    current_user: models.User = Depends(get_current_active_user),
    coordinator: SubscriptionCoordinator = Depends(get_subscription_coordinator),
):
    coordinator.cancel(current_user)
    return {"success": True}


@router.post("/reativar", response_model=schemas.CheckoutResponse)
def reactivate_subscription(
    current_user: models.User = Depends(get_current_active_user),
    coordinator: SubscriptionCoordinator = Depends(get_subscription_coordinator),
):
    return {"init_point": coordinator.reactivate(current_user)}


def _parse_signature_header(raw_header: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in (raw_header or "").split(","):
        key, _, value = chunk.partition("=")
        if key.strip() and value.strip():
            parts[key.strip().lower()] = value.strip()
    return parts


def _signature_manifest(data_id: str, request_id: str, ts: str) -> str:
    manifest = ""
    if data_id:
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    if ts:
        manifest += f"ts:{ts};"
    return manifest


def verify_webhook_signature(request: Request, data_id: str, secret: str) -> bool:
    signature = _parse_signature_header(request.headers.get("x-signature", ""))
    ts = signature.get("ts", "")
    provided = signature.get("v1", "")
    if not ts or not provided:
        return False

    manifest = _signature_manifest(data_id, request.headers.get("x-request-id", "").strip(), ts)
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided)


def _notification_fields(body: dict[str, Any], request: Request) -> tuple[str, str]:
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    agreement_id = (
        data.get("id")
        or body.get("id")
        or request.query_params.get("data.id")
        or request.query_params.get("id")
    )
    topic = (
        body.get("type")
        or body.get("topic")
        or request.query_params.get("type")
        or request.query_params.get("topic")
    )
    return str(agreement_id or "").strip(), str(topic or "").strip()


@webhook_router.post("/mercadopago")
async def mercadopago_webhook(
    request: Request,
    coordinator: SubscriptionCoordinator = Depends(get_subscription_coordinator),
):
    """
    Mercado Pago notification endpoint.

    Answers 200 for everything that needs no retry, including unknown
    agreements and ignored topics; 500 only when the store or the gateway
    failed, so Mercado Pago redelivers later.
    """
    raw_body = await request.body()
    try:
        body = json.loads(raw_body.decode("utf-8")) if raw_body else {}
    except (UnicodeDecodeError, ValueError):
        body = {}
    if not isinstance(body, dict):
        body = {}

    agreement_id, topic = _notification_fields(body, request)

    if MERCADOPAGO_WEBHOOK_SECRET and not verify_webhook_signature(request, agreement_id, MERCADOPAGO_WEBHOOK_SECRET):
        raise HTTPException(status_code=400, detail="Invalid webhook signature.")

    try:
        outcome = await run_in_threadpool(coordinator.handle_notification, agreement_id, topic)
    except NotFoundError:
        return {"status": "ignored", "reason": "not_found"}
    except (GatewayError, TransientStoreError) as exc:
        logger.exception("Mercado Pago webhook failed for agreement %s", agreement_id)
        return JSONResponse(status_code=500, content={"status": "error", "detail": str(exc)})

    response: dict[str, Any] = {"status": outcome.status}
    if outcome.reason:
        response["reason"] = outcome.reason
    return response
