"""Structural customer checks shared by the live validator and the service."""
import re
from typing import List, Optional

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
PHONE_MAX_LENGTH = 20
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15
ADDRESS_MAX_LENGTH = 200

_PHONE_NOISE = re.compile(r"[\s\-()]")
_NON_DIGIT = re.compile(r"\D")


def normalize_text(value: Optional[str]) -> str:
    return (value or "").strip()


def phone_digits(phone_number: Optional[str]) -> str:
    """The digits of a phone number; two numbers are the same when these match."""
    return _NON_DIGIT.sub("", phone_number or "")


def is_valid_phone_format(phone_number: str) -> bool:
    """Digits only once spaces, dashes, parentheses and a leading + are removed."""
    cleaned = _PHONE_NOISE.sub("", phone_number.strip())
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    return PHONE_MIN_DIGITS <= len(cleaned) <= PHONE_MAX_DIGITS and cleaned.isdigit()


def check_name(name: Optional[str]) -> List[str]:
    trimmed = normalize_text(name)
    if not trimmed:
        return ["Customer name is required."]
    if len(trimmed) < NAME_MIN_LENGTH:
        return ["Customer name is too short."]
    if len(trimmed) > NAME_MAX_LENGTH:
        return ["Customer name is too long."]
    return []


def check_phone(phone_number: Optional[str]) -> List[str]:
    trimmed = normalize_text(phone_number)
    if not trimmed:
        return []  # optional
    if len(trimmed) > PHONE_MAX_LENGTH:
        return ["Phone number is too long."]
    if not is_valid_phone_format(trimmed):
        return ["Phone number is not valid."]
    return []


def check_address(address: Optional[str]) -> List[str]:
    if len(normalize_text(address)) > ADDRESS_MAX_LENGTH:
        return ["Address is too long."]
    return []
