import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

import requests
from dotenv import load_dotenv

from quimita import models
from quimita.errors import GatewayError

load_dotenv()

logger = logging.getLogger(__name__)

MERCADOPAGO_API_BASE = os.getenv("MERCADOPAGO_API_BASE", "https://api.mercadopago.com").rstrip("/")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
SUBSCRIPTION_REASON = os.getenv("SUBSCRIPTION_REASON", "Assinatura Mensal - Plataforma QuimITA")


def _is_truthy(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _mercadopago_access_token() -> str:
    return os.getenv("MERCADOPAGO_ACCESS_TOKEN", "").strip()


def _mercadopago_timeout_seconds() -> float:
    raw = os.getenv("MERCADOPAGO_TIMEOUT_SECONDS", "15").strip()
    try:
        timeout = float(raw)
        if timeout <= 0:
            raise ValueError
        return timeout
    except ValueError:
        return 15.0


def _subscription_amount() -> float:
    raw = os.getenv("SUBSCRIPTION_AMOUNT", "39.9").strip()
    try:
        amount = round(float(raw), 2)
        if amount <= 0:
            raise ValueError
        return amount
    except ValueError:
        return 39.9


def _subscription_currency() -> str:
    currency = os.getenv("SUBSCRIPTION_CURRENCY", "BRL").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        return "BRL"
    return currency


@dataclass(frozen=True)
class GatewayAgreement:
    id: str
    status: str
    init_point: Optional[str] = None


class MercadoPagoGateway:
    """
    Client for Mercado Pago's preapproval (recurring agreement) API.

    Every failure, whether transport, HTTP status or payload shape, is raised
    as GatewayError so callers never have to look at ``requests`` exceptions.
    """

    def __init__(
        self,
        access_token: str,
        api_base: str = MERCADOPAGO_API_BASE,
        timeout: float = 15.0,
        requires_tax_id: bool = True,
    ):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.requires_tax_id = requires_tax_id

    def build_agreement_payload(self, user: models.User) -> dict[str, Any]:
        return {
            "reason": SUBSCRIPTION_REASON,
            "external_reference": str(user.id),
            "payer_email": user.email,
            "auto_recurring": {
                "frequency": 1,
                "frequency_type": "months",
                "transaction_amount": _subscription_amount(),
                "currency_id": _subscription_currency(),
            },
            "back_url": f"{FRONTEND_URL}/sucesso",
            "status": "pending",
        }

    def create(self, payload: dict[str, Any]) -> GatewayAgreement:
        data = self._request("POST", "/preapproval", json_payload=payload)
        agreement = self._to_agreement(data)
        if not agreement.init_point:
            raise GatewayError("Mercado Pago did not return a checkout link for the new subscription.")
        return agreement

    def get(self, agreement_id: str) -> GatewayAgreement:
        return self._to_agreement(self._request("GET", f"/preapproval/{agreement_id}"))

    def update(self, agreement_id: str, status: str) -> GatewayAgreement:
        data = self._request("PUT", f"/preapproval/{agreement_id}", json_payload={"status": status})
        return self._to_agreement(data, fallback_id=agreement_id)

    def _request(
        self,
        method: str,
        path: str,
        json_payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if not self.access_token:
            raise GatewayError("Mercado Pago is not configured.")

        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = requests.request(
                method=method.upper(),
                url=url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                json=json_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Mercado Pago %s %s failed: %s", method.upper(), path, exc)
            raise GatewayError(f"Failed to contact Mercado Pago: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "Mercado Pago %s %s returned HTTP %s: %s",
                method.upper(),
                path,
                response.status_code,
                response.text[:500],
            )
            raise GatewayError("Unable to process Mercado Pago request right now.")

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError("Invalid response received from Mercado Pago.") from exc

        if not isinstance(payload, dict):
            raise GatewayError("Unexpected response format from Mercado Pago.")
        return payload

    @staticmethod
    def _to_agreement(data: dict[str, Any], fallback_id: Optional[str] = None) -> GatewayAgreement:
        agreement_id = str(data.get("id") or fallback_id or "").strip()
        if not agreement_id:
            raise GatewayError("Mercado Pago response is missing the agreement id.")
        return GatewayAgreement(
            id=agreement_id,
            status=str(data.get("status") or "").strip().lower(),
            init_point=data.get("init_point"),
        )


@lru_cache
def get_billing_gateway() -> MercadoPagoGateway:
    """Process-wide gateway, injected into routes with ``Depends``."""
    access_token = _mercadopago_access_token()
    if not access_token:
        logger.warning("MERCADOPAGO_ACCESS_TOKEN is not set. Subscription features will be unavailable.")
    return MercadoPagoGateway(
        access_token=access_token,
        api_base=MERCADOPAGO_API_BASE,
        timeout=_mercadopago_timeout_seconds(),
        requires_tax_id=_is_truthy(os.getenv("MERCADOPAGO_REQUIRE_CPF", "true")),
    )
