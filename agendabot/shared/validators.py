"""Shared validation utilities"""

import re
from typing import Optional

BRAZIL_COUNTRY_CODE = "55"


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a WhatsApp phone number to digits with country code.

    Bare national numbers (10 or 11 digits, DDD + number) get the Brazilian
    country code prefixed. Anything already carrying a country code is kept.
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)

    if len(digits) in (10, 11):
        digits = f"{BRAZIL_COUNTRY_CODE}{digits}"

    return digits


def validate_cpf(cpf: Optional[str]) -> Optional[str]:
    """
    Validate a Brazilian CPF and return its 11 digits.

    Raises:
        ValueError: If the CPF is malformed or its check digits do not match
    """
    if not cpf:
        raise ValueError("CPF is required")

    digits = re.sub(r"\D", "", cpf)

    if len(digits) != 11:
        raise ValueError("CPF must have 11 digits")

    # 000.000.000-00, 111.111.111-11, ... pass the checksum but are invalid
    if digits == digits[0] * 11:
        raise ValueError("Invalid CPF")

    for position in (9, 10):
        total = sum(int(digits[i]) * (position + 1 - i) for i in range(position))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(digits[position]):
            raise ValueError("Invalid CPF")

    return digits


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def format_cpf(cpf: str) -> str:
    """123.456.789-09"""
    digits = re.sub(r"\D", "", cpf or "")
    if len(digits) != 11:
        return cpf
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def format_currency(value: float) -> str:
    """Format as Brazilian real, e.g. R$ 1.234,50"""
    formatted = f"{value:,.2f}"
    return "R$ " + formatted.replace(",", "_").replace(".", ",").replace("_", ".")
