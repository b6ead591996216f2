"""
Payment gateway adapter.

Speaks the Midtrans Core API: charges are created with ``POST /v2/charge`` and
polled with ``GET /v2/{order_id}/status``, authenticated with HTTP Basic auth
using the server key. Push notifications are signed with
sha512(order_id + status_code + gross_amount + server_key).
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from parkgo.config import settings
from parkgo.core.exceptions import GatewayUnavailableError, ValidationError
from parkgo.core.metrics import GATEWAY_ERRORS
from parkgo.models.transaction import PaymentMethod

logger = logging.getLogger(__name__)

ITEM_NAME = "Top Up Saldo ParkGo"

# Prefix and number of timestamp digits used for simulated virtual accounts
SIMULATED_VA_FORMATS = {
    "bca": ("28064", 13),
    "bni": ("8000", 12),
    "bri": ("12345", 12),
    "mandiri": ("70012", 10),
    "permata": ("85400", 11),
}


@dataclass
class ChargeRequest:
    correlation_id: str
    amount: int
    method: PaymentMethod
    customer_name: str
    customer_email: str


@dataclass
class ChargeResult:
    transaction_status: str
    fraud_status: Optional[str] = None
    va_number: Optional[str] = None
    bank_code: Optional[str] = None
    redirect_url: Optional[str] = None
    qr_payload: Optional[str] = None
    simulated: bool = False


@dataclass
class GatewayStatus:
    correlation_id: str
    transaction_status: str
    fraud_status: Optional[str] = None
    gross_amount: Optional[str] = None


class PaymentGateway(Protocol):
    async def create_charge(self, request: ChargeRequest) -> ChargeResult:
        ...

    async def query_status(self, correlation_id: str) -> GatewayStatus:
        ...

    def verify_notification(self, payload: Dict[str, Any]) -> bool:
        ...


def notification_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


class MidtransGateway:
    """
    Midtrans Core API client
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        server_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_URL).rstrip("/")
        self.server_key = settings.PAYMENT_SERVER_KEY if server_key is None else server_key
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self.transport = transport
        self.logger = logging.getLogger(__name__)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.server_key, ""),
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"}
        )

    async def _request(self, operation: str, method: str, path: str, json: Optional[dict] = None) -> dict:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            GATEWAY_ERRORS.labels(operation=operation).inc()
            self.logger.warning(f"Payment gateway timed out on {operation}: {e}")
            raise GatewayUnavailableError("Payment gateway timed out", details={"operation": operation})
        except (httpx.HTTPError, ValueError) as e:
            GATEWAY_ERRORS.labels(operation=operation).inc()
            self.logger.error(f"Payment gateway error on {operation}: {e}")
            raise GatewayUnavailableError(details={"operation": operation})

        return body

    def _charge_payload(self, request: ChargeRequest) -> dict:
        payload = {
            "transaction_details": {
                "order_id": request.correlation_id,
                "gross_amount": request.amount,
            },
            "customer_details": {
                "first_name": request.customer_name,
                "email": request.customer_email,
            },
            "item_details": [{
                "id": "topup_saldo",
                "price": request.amount,
                "quantity": 1,
                "name": ITEM_NAME,
            }],
        }

        if request.method.is_virtual_account:
            payload["payment_type"] = "bank_transfer"
            payload["bank_transfer"] = {"bank": request.method.bank_code}
        elif request.method == PaymentMethod.QRIS:
            payload["payment_type"] = "qris"
            payload["qris"] = {"acquirer": "gopay"}
        elif request.method == PaymentMethod.GOPAY:
            payload["payment_type"] = "gopay"
        else:
            raise ValidationError(f"{request.method.value} is not a gateway payment method", field="payment_method")
        return payload

    async def create_charge(self, request: ChargeRequest) -> ChargeResult:
        body = await self._request("charge", "POST", "/v2/charge", json=self._charge_payload(request))

        status_code = str(body.get("status_code", ""))
        if not status_code.startswith("2"):
            GATEWAY_ERRORS.labels(operation="charge").inc()
            self.logger.error(
                "Payment gateway rejected charge",
                extra={"correlation_id": request.correlation_id, "status_code": status_code,
                       "status_message": body.get("status_message")}
            )
            raise GatewayUnavailableError(
                body.get("status_message") or "Payment gateway rejected the charge",
                details={"status_code": status_code}
            )

        result = ChargeResult(
            transaction_status=body.get("transaction_status", "pending"),
            fraud_status=body.get("fraud_status"),
        )

        va_numbers = body.get("va_numbers") or []
        if va_numbers:
            result.va_number = va_numbers[0].get("va_number")
            result.bank_code = (va_numbers[0].get("bank") or request.method.bank_code or "").upper() or None
        elif body.get("permata_va_number"):
            result.va_number = body["permata_va_number"]
            result.bank_code = "PERMATA"

        result.qr_payload = body.get("qr_string")
        for action in body.get("actions") or []:
            if action.get("name") in ("deeplink-redirect", "generate-qr-code") and not result.redirect_url:
                result.redirect_url = action.get("url")
        result.redirect_url = result.redirect_url or body.get("redirect_url")

        self.logger.info(
            "Gateway charge created",
            extra={"correlation_id": request.correlation_id, "transaction_status": result.transaction_status}
        )
        return result

    async def query_status(self, correlation_id: str) -> GatewayStatus:
        body = await self._request("status", "GET", f"/v2/{correlation_id}/status")

        # Unpaid charges the gateway has not registered yet answer 404
        if str(body.get("status_code", "")) == "404":
            return GatewayStatus(correlation_id=correlation_id, transaction_status="pending")

        return GatewayStatus(
            correlation_id=body.get("order_id", correlation_id),
            transaction_status=body.get("transaction_status", "pending"),
            fraud_status=body.get("fraud_status"),
            gross_amount=body.get("gross_amount"),
        )

    def verify_notification(self, payload: Dict[str, Any]) -> bool:
        try:
            expected = notification_signature(
                str(payload["order_id"]),
                str(payload["status_code"]),
                str(payload["gross_amount"]),
                self.server_key
            )
        except KeyError:
            return False
        return hmac.compare_digest(expected, str(payload.get("signature_key", "")))


def crc16_ccitt(data: str) -> str:
    crc = 0xFFFF
    for char in data:
        crc ^= ord(char) << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ 0x1021
            else:
                crc <<= 1
            crc &= 0xFFFF
    return f"{crc:04X}"


def _tlv(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def simulated_qris(correlation_id: str, amount: int) -> str:
    """EMVCo-shaped QRIS payload for sandbox use, with a valid CRC"""
    payload = "".join([
        _tlv("00", "01"),
        _tlv("01", "12"),
        _tlv("26", "93600016ID.CO.QRIS.WWW0215ID20232090059510303UMI"),
        _tlv("52", "5999"),
        _tlv("53", "360"),
        _tlv("54", str(amount)),
        _tlv("58", "ID"),
        _tlv("59", "PARKGO"),
        _tlv("60", "JAKARTA"),
        _tlv("62", _tlv("01", correlation_id[-8:])),
    ])
    payload += "6304"
    return payload + crc16_ccitt(payload)


def simulated_va_number(bank_code: str) -> str:
    prefix, digits = SIMULATED_VA_FORMATS.get(bank_code.lower(), ("88888", 10))
    timestamp = str(int(time.time() * 1000))
    return f"{prefix}{timestamp[-digits:]}"


def simulated_charge(request: ChargeRequest) -> Optional[ChargeResult]:
    """
    Routing details to hand out when the gateway is unreachable and payment
    simulation is enabled. Methods that need a live redirect return None.
    """
    if request.method.is_virtual_account:
        bank_code = request.method.bank_code
        return ChargeResult(
            transaction_status="pending",
            va_number=simulated_va_number(bank_code),
            bank_code=bank_code.upper(),
            simulated=True,
        )
    if request.method == PaymentMethod.QRIS:
        return ChargeResult(
            transaction_status="pending",
            qr_payload=simulated_qris(request.correlation_id, request.amount),
            simulated=True,
        )
    return None


payment_gateway = MidtransGateway()
