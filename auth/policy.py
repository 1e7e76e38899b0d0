"""
auth/policy.py -- Password strength policy.

Separate from hashing: this decides whether a *new* password is acceptable
(invitation acceptance, admin seeding). Every failed rule contributes its own
message so a form can show all problems at once.

Strength estimation uses zxcvbn (score 0-4); 3 means "safely unguessable".
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from zxcvbn import zxcvbn

MIN_LENGTH = 12
MAX_LENGTH = 128
MIN_SCORE = 3

# Recent zxcvbn releases refuse inputs over 72 characters; only this prefix is scored.
_ZXCVBN_INPUT_LIMIT = 72

_SPECIAL_RE = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?`~]""")

ERRORS = {
    "too_short": f"Password must be at least {MIN_LENGTH} characters",
    "too_long": f"Password must not exceed {MAX_LENGTH} characters",
    "no_uppercase": "Password must contain at least one uppercase letter",
    "no_lowercase": "Password must contain at least one lowercase letter",
    "no_number": "Password must contain at least one number",
    "no_special": "Password must contain at least one special character (!@#$%^&*...)",
    "too_weak": "Password is too weak or easily guessable",
}


@dataclass
class PasswordCheck:
    valid: bool
    score: int
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    crack_time: str = ""


def validate_password(password: str) -> PasswordCheck:
    """Apply every policy rule and return all failures together."""
    errors: list[str] = []

    if len(password) < MIN_LENGTH:
        errors.append(ERRORS["too_short"])
    if len(password) > MAX_LENGTH:
        errors.append(ERRORS["too_long"])
    if not re.search(r"[A-Z]", password):
        errors.append(ERRORS["no_uppercase"])
    if not re.search(r"[a-z]", password):
        errors.append(ERRORS["no_lowercase"])
    if not re.search(r"\d", password):
        errors.append(ERRORS["no_number"])
    if not _SPECIAL_RE.search(password):
        errors.append(ERRORS["no_special"])

    result = zxcvbn(password[:_ZXCVBN_INPUT_LIMIT]) if password else None
    score = int(result["score"]) if result else 0
    suggestions = list(result["feedback"].get("suggestions") or []) if result else []
    crack_time = str(result["crack_times_display"]["offline_slow_hashing_1e4_per_second"]) if result else ""

    if score < MIN_SCORE:
        errors.append(ERRORS["too_weak"])

    return PasswordCheck(
        valid=not errors,
        score=score,
        errors=errors,
        suggestions=suggestions,
        crack_time=crack_time,
    )
