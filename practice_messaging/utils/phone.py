"""
Phone Number Utilities
Best-effort normalization for Brazilian WhatsApp numbers
"""
import re
from typing import List, Optional
from urllib.parse import quote

BRAZIL_COUNTRY_CODE = "55"
_VALID_BRAZILIAN_NUMBER = re.compile(r"^55\d{10,11}$")


def digits_only(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def format_phone_number(phone: str) -> str:
    """
    Normalize a phone number for the WhatsApp API.

    - strips every non-digit
    - numbers already starting with 55 pass through
    - 10 or 11 digit local numbers get the 55 prefix
    - anything else is returned stripped but otherwise unchanged

    Example:
        format_phone_number("+55 (11) 99999-8888") -> "5511999998888"
        format_phone_number("11999998888") -> "5511999998888"
    """
    cleaned = digits_only(phone)

    if cleaned.startswith(BRAZIL_COUNTRY_CODE):
        return cleaned

    if len(cleaned) in (10, 11):
        return f"{BRAZIL_COUNTRY_CODE}{cleaned}"

    return cleaned


def is_valid_phone_number(phone: str) -> bool:
    """Brazilian numbers: 55 + 2 digit area code + 8-9 digit subscriber number"""
    return bool(_VALID_BRAZILIAN_NUMBER.match(format_phone_number(phone)))


def phone_match_candidates(phone: str) -> List[str]:
    """
    Digit strings to look for when matching a provider wa_id against stored
    contact numbers, which may or may not carry the country code.
    """
    cleaned = digits_only(phone)
    if not cleaned:
        return []

    candidates = [cleaned]
    if cleaned.startswith(BRAZIL_COUNTRY_CODE) and len(cleaned) > 11:
        candidates.append(cleaned[len(BRAZIL_COUNTRY_CODE):])
    return candidates


def format_phone_for_display(phone: str) -> str:
    """+55 (11) 9 9999-8888 for mobiles, +55 (11) 9999-8888 for landlines"""
    cleaned = digits_only(phone)

    if cleaned.startswith(BRAZIL_COUNTRY_CODE) and len(cleaned) >= 12:
        number = cleaned[2:]
        if len(number) == 11:
            return f"+55 ({number[:2]}) {number[2:3]} {number[3:7]}-{number[7:]}"
        if len(number) == 10:
            return f"+55 ({number[:2]}) {number[2:6]}-{number[6:]}"

    return phone


def generate_chat_url(phone: str, message: Optional[str] = None) -> str:
    """wa.me deep link, optionally with a prefilled message"""
    url = f"https://wa.me/{digits_only(phone)}"
    if message:
        url += f"?text={quote(message)}"
    return url
