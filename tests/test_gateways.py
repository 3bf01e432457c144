"""HTTP gateway client tests against httpx.MockTransport."""

import json
from datetime import date, datetime

import httpx
import pytest

from agendabot.exceptions import ExternalServiceError
from agendabot.services.asaas_service import AsaasService
from agendabot.services.google_calendar_service import GoogleCalendarService
from agendabot.services.whatsapp_service import WhatsAppService


def recorder(handler):
    """MockTransport that keeps every request it saw"""
    seen = []

    def _handle(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(_handle), seen


class TestWhatsApp:
    async def test_send_text(self):
        transport, seen = recorder(lambda r: httpx.Response(200, json={"messages": [{"id": "wamid.OUT"}]}))
        service = WhatsAppService("PHONE_ID", "TOKEN", "https://graph.example/v21.0", transport=transport)

        message_id = await service.send_text("5511987654321", "Hello")

        assert message_id == "wamid.OUT"
        request = seen[0]
        assert request.url == "https://graph.example/v21.0/PHONE_ID/messages"
        assert request.headers["Authorization"] == "Bearer TOKEN"
        body = json.loads(request.content)
        assert body["to"] == "5511987654321"
        assert body["text"]["body"] == "Hello"

    async def test_buttons_are_capped(self):
        transport, seen = recorder(lambda r: httpx.Response(200, json={"messages": [{"id": "wamid.B"}]}))
        service = WhatsAppService("PHONE_ID", "TOKEN", transport=transport)
        buttons = [{"id": str(i), "title": f"Option number {i} with a long title"} for i in range(5)]

        await service.send_buttons("5511987654321", "Pick one", buttons)

        sent = json.loads(seen[0].content)["interactive"]["action"]["buttons"]
        assert len(sent) == 3
        assert all(len(b["reply"]["title"]) <= 20 for b in sent)

    async def test_api_error_raises(self):
        transport, _ = recorder(lambda r: httpx.Response(400, json={"error": {"message": "bad number"}}))
        service = WhatsAppService("PHONE_ID", "TOKEN", transport=transport)

        with pytest.raises(ExternalServiceError) as exc:
            await service.send_text("123", "Hello")
        assert exc.value.status_code == 400

    async def test_timeout_raises(self):
        def timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        service = WhatsAppService("PHONE_ID", "TOKEN", transport=httpx.MockTransport(timeout))

        with pytest.raises(ExternalServiceError):
            await service.send_text("5511987654321", "Hello")

    async def test_unconfigured_does_not_call(self):
        transport, seen = recorder(lambda r: httpx.Response(200, json={}))
        service = WhatsAppService(transport=transport)
        service.phone_number_id = None

        assert await service.send_text("5511987654321", "Hello") is None
        assert seen == []


class TestAsaas:
    async def test_create_invoice_sends_idempotency_key(self):
        transport, seen = recorder(lambda r: httpx.Response(200, json={"id": "pay_1", "invoiceUrl": "https://x"}))
        service = AsaasService("https://asaas.example/v3", "KEY", transport=transport)

        invoice = await service.create_invoice(
            "cus_1", 200.0, date(2026, 3, 5), "PIX", external_reference="42", idempotency_key="appointment-42-invoice"
        )

        assert invoice["id"] == "pay_1"
        request = seen[0]
        assert request.method == "POST"
        assert request.url == "https://asaas.example/v3/payments"
        assert request.headers["access_token"] == "KEY"
        assert request.headers["Idempotency-Key"] == "appointment-42-invoice"
        assert json.loads(request.content) == {
            "customer": "cus_1",
            "billingType": "PIX",
            "value": 200.0,
            "dueDate": "2026-03-05",
            "externalReference": "42",
        }

    async def test_create_customer_reuses_existing(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"data": [{"id": "cus_existing"}]})
            return httpx.Response(200, json={"id": "cus_new"})

        transport, seen = recorder(handler)
        service = AsaasService("https://asaas.example/v3", "KEY", transport=transport)

        customer = await service.create_customer("Maria Silva", "52998224725")

        assert customer["id"] == "cus_existing"
        assert [r.method for r in seen] == ["GET"]

    async def test_gateway_error(self):
        transport, _ = recorder(lambda r: httpx.Response(500, text="boom"))
        service = AsaasService("https://asaas.example/v3", "KEY", transport=transport)

        with pytest.raises(ExternalServiceError) as exc:
            await service.get_pix_payload("pay_1")
        assert exc.value.service == "asaas"


class TestGoogleCalendar:
    @staticmethod
    def service(handler):
        def with_token(request):
            if request.url.host == "oauth2.googleapis.com":
                return httpx.Response(200, json={"access_token": "ACCESS", "expires_in": 3600})
            return handler(request)

        transport, seen = recorder(with_token)
        return GoogleCalendarService("id", "secret", "refresh", "primary", transport=transport), seen

    async def test_busy_windows_skip_free_and_cancelled(self):
        items = [
            {"id": "a", "start": {"dateTime": "2026-03-09T10:00:00-03:00"}, "end": {"dateTime": "2026-03-09T10:50:00-03:00"}},
            {"id": "b", "transparency": "transparent",
             "start": {"dateTime": "2026-03-09T14:00:00-03:00"}, "end": {"dateTime": "2026-03-09T15:00:00-03:00"}},
            {"id": "c", "status": "cancelled",
             "start": {"dateTime": "2026-03-09T16:00:00-03:00"}, "end": {"dateTime": "2026-03-09T17:00:00-03:00"}},
            {"id": "d", "start": {"dateTime": "2026-03-09T20:00:00Z"}, "end": {"dateTime": "2026-03-09T21:00:00Z"}},
        ]
        service, seen = self.service(lambda r: httpx.Response(200, json={"items": items}))

        windows = await service.busy_windows(date(2026, 3, 9))

        assert windows == [
            (datetime(2026, 3, 9, 10, 0), datetime(2026, 3, 9, 10, 50)),
            (datetime(2026, 3, 9, 17, 0), datetime(2026, 3, 9, 18, 0)),
        ]
        assert seen[-1].headers["Authorization"] == "Bearer ACCESS"

    async def test_busy_windows_follow_pages(self):
        pages = {
            None: {
                "items": [{"id": "a", "start": {"dateTime": "2026-03-09T10:00:00-03:00"},
                           "end": {"dateTime": "2026-03-09T10:50:00-03:00"}}],
                "nextPageToken": "page-2",
            },
            "page-2": {
                "items": [{"id": "b", "start": {"dateTime": "2026-03-09T15:00:00-03:00"},
                           "end": {"dateTime": "2026-03-09T15:50:00-03:00"}}],
            },
        }
        service, seen = self.service(lambda r: httpx.Response(200, json=pages[r.url.params.get("pageToken")]))

        windows = await service.busy_windows(date(2026, 3, 9))

        assert windows == [
            (datetime(2026, 3, 9, 10, 0), datetime(2026, 3, 9, 10, 50)),
            (datetime(2026, 3, 9, 15, 0), datetime(2026, 3, 9, 15, 50)),
        ]
        event_calls = [r for r in seen if r.url.host != "oauth2.googleapis.com"]
        assert len(event_calls) == 2
        assert event_calls[1].url.params["pageToken"] == "page-2"

    async def test_token_refreshed_once(self):
        service, seen = self.service(lambda r: httpx.Response(200, json={"id": "evt-1"}))

        await service.create_event("Maria", datetime(2026, 3, 9, 10), datetime(2026, 3, 9, 10, 50))
        await service.create_event("Maria", datetime(2026, 3, 9, 11), datetime(2026, 3, 9, 11, 50))

        token_calls = [r for r in seen if r.url.host == "oauth2.googleapis.com"]
        assert len(token_calls) == 1
        body = json.loads(seen[1].content)
        assert body["start"]["dateTime"] == "2026-03-09T10:00:00-03:00"

    async def test_delete_already_gone_is_ok(self):
        service, _ = self.service(lambda r: httpx.Response(410, json={"error": "gone"}))

        await service.delete_event("evt-1")

    async def test_token_failure_raises(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_grant"})

        transport = httpx.MockTransport(handler)
        service = GoogleCalendarService("id", "secret", "refresh", "primary", transport=transport)

        with pytest.raises(ExternalServiceError):
            await service.create_event("Maria", datetime(2026, 3, 9, 10), datetime(2026, 3, 9, 10, 50))
