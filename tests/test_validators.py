import asyncio

import pytest

from agendabot.shared.locks import KeyedLocks
from agendabot.shared.validators import (
    format_cpf,
    format_currency,
    normalize_phone,
    validate_cpf,
    validate_email,
)
from agendabot.webhook_security import WebhookSignatureError, compute_hmac_sha256, verify_whatsapp_signature


@pytest.mark.parametrize(
    "value,expected",
    [
        ("(11) 98765-4321", "5511987654321"),
        ("1133334444", "551133334444"),
        ("+55 11 98765-4321", "5511987654321"),
        ("5511987654321", "5511987654321"),
    ],
)
def test_normalize_phone(value, expected):
    assert normalize_phone(value) == expected


def test_validate_cpf():
    assert validate_cpf("529.982.247-25") == "52998224725"
    assert format_cpf("52998224725") == "529.982.247-25"


@pytest.mark.parametrize("value", ["", "123", "111.111.111-11", "529.982.247-26", "12345678900"])
def test_validate_cpf_rejects(value):
    with pytest.raises(ValueError):
        validate_cpf(value)


def test_validate_email():
    assert validate_email(" Maria@Example.COM ") == "maria@example.com"
    with pytest.raises(ValueError):
        validate_email("maria@")


def test_format_currency():
    assert format_currency(1234.5) == "R$ 1.234,50"


def test_whatsapp_signature():
    body = b'{"object":"whatsapp_business_account"}'
    verify_whatsapp_signature(body, "sha256=" + compute_hmac_sha256("secret", body), "secret")

    with pytest.raises(WebhookSignatureError):
        verify_whatsapp_signature(body, "sha256=" + compute_hmac_sha256("other", body), "secret")
    with pytest.raises(WebhookSignatureError):
        verify_whatsapp_signature(body, None, "secret")


async def test_keyed_locks_serialize_same_key():
    locks = KeyedLocks()
    order = []

    async def worker(key, name):
        async with locks.hold(key):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", "first"), worker("a", "second"))

    assert order == ["first-in", "first-out", "second-in", "second-out"]
    assert len(locks) == 0
