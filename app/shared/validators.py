"""Shared validation utilities"""

import re
from typing import Optional

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> int:
    """
    Parse a 24h "HH:MM" string into minutes since midnight.

    Raises:
        ValueError: If the string is not a valid 24h time
    """
    if not isinstance(value, str):
        raise ValueError("Time must be a string in HH:MM format")

    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time '{value}'. Expected HH:MM (24h)")

    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    """Format minutes since midnight as "HH:MM" """
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def validate_hhmm(value: str) -> str:
    """Validate and normalize a 24h time string"""
    return format_minutes(parse_hhmm(value))


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate a phone number loosely: 7-15 digits, optional leading +.
    Formatting characters are stripped.
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)
    if len(digits) < 7 or len(digits) > 15:
        raise ValueError("Phone number must contain 7 to 15 digits")

    return f"+{digits}" if phone.strip().startswith("+") else digits
