"""
Asaas Payment Gateway Service
Handles customer sync, invoice (payment) creation and payment instructions
"""

import logging
from datetime import date
from typing import Optional

import httpx

from ..config import ASAAS_API_KEY, ASAAS_API_URL, REMOTE_TIMEOUT_SECONDS
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class AsaasService:
    """Payment Gateway client"""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = (api_url or ASAAS_API_URL).rstrip("/")
        self.api_key = api_key or ASAAS_API_KEY
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        request_headers = {"access_token": self.api_key or "", "Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method, f"{self.api_url}{path}", json=json, params=params, headers=request_headers
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Asaas request failed: {method} {path}: {e}")
            raise ExternalServiceError("asaas", str(e)) from e

        if response.status_code not in (200, 201):
            logger.error(f"❌ Asaas API error {response.status_code} on {method} {path}: {response.text}")
            raise ExternalServiceError("asaas", response.text, response.status_code)

        return response.json()

    # ========================================================================
    # CUSTOMERS
    # ========================================================================

    async def find_customer_by_tax_id(self, tax_id: str) -> Optional[dict]:
        result = await self._request("GET", "/customers", params={"cpfCnpj": tax_id})
        customers = result.get("data") or []
        return customers[0] if customers else None

    async def create_customer(
        self, name: str, tax_id: str, email: Optional[str] = None, phone: Optional[str] = None
    ) -> dict:
        """Create a customer, returning the existing one when the tax id is already registered"""
        existing = await self.find_customer_by_tax_id(tax_id)
        if existing:
            logger.info(f"ℹ️ Asaas customer already exists for tax id: {existing['id']}")
            return existing

        payload = {"name": name, "cpfCnpj": tax_id, "notificationDisabled": True}
        if email:
            payload["email"] = email
        if phone:
            payload["mobilePhone"] = phone

        customer = await self._request("POST", "/customers", json=payload)
        logger.info(f"✅ Asaas customer created: {customer['id']}")
        return customer

    # ========================================================================
    # PAYMENTS
    # ========================================================================

    async def create_invoice(
        self,
        customer_id: str,
        amount: float,
        due_date: date,
        billing_type: str,
        description: Optional[str] = None,
        external_reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        payload = {
            "customer": customer_id,
            "billingType": billing_type,
            "value": round(amount, 2),
            "dueDate": due_date.isoformat(),
        }
        if description:
            payload["description"] = description
        if external_reference:
            payload["externalReference"] = external_reference

        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        invoice = await self._request("POST", "/payments", json=payload, headers=headers)
        logger.info(f"✅ Asaas payment created: {invoice['id']} ({billing_type}, {amount:.2f})")
        return invoice

    async def get_invoice(self, remote_id: str) -> dict:
        return await self._request("GET", f"/payments/{remote_id}")

    async def cancel_invoice(self, remote_id: str) -> dict:
        result = await self._request("DELETE", f"/payments/{remote_id}")
        logger.info(f"✅ Asaas payment cancelled: {remote_id}")
        return result

    async def get_pix_payload(self, remote_id: str) -> Optional[str]:
        """PIX copy-and-paste code for a payment"""
        result = await self._request("GET", f"/payments/{remote_id}/pixQrCode")
        return result.get("payload")

    async def get_boleto_line(self, remote_id: str) -> Optional[str]:
        """Boleto digitable line for a payment"""
        result = await self._request("GET", f"/payments/{remote_id}/identificationField")
        return result.get("identificationField")


# Global instance
asaas_service = AsaasService()
