"""
Server-side password policy for sign-up, company registration and admin resets.
"""
import re
from typing import Optional

COMMON_PASSWORDS = (
    "password", "password1", "password123", "123456", "12345678", "123456789",
    "qwerty", "qwerty123", "admin", "admin123", "letmein", "welcome", "welcome1",
    "abc123", "monkey", "123123", "dragon", "master", "login", "admin1234",
)

_SYMBOLS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def password_problem(password: Optional[str]) -> Optional[str]:
    """Return a human readable reason the password is rejected, or None if it is acceptable."""
    if not password:
        return "Password is required"
    if len(password) < 8:
        return "Password must be at least 8 characters"
    if len(password) > 100:
        return "Password is too long"
    if not re.search(r"[A-Z]", password):
        return "Password must contain an uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain a lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain a digit"
    if not _SYMBOLS.search(password):
        return "Password must contain a symbol (!@#$%^&*)"
    lower = password.lower()
    if any(common in lower for common in COMMON_PASSWORDS):
        return "Password is too weak"
    return None
