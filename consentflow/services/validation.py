"""
Validation layer.

Pure, side-effect-free checks that gate every transition depending on
user-entered data. "state" arguments are duck-typed: anything exposing
``encounter_type``, ``method`` and ``parties`` (a ConsentFlowSession or a
persisted Contract).
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from consentflow.core.errors import ValidationError
from consentflow.core.timeutil import as_utc
from consentflow.models.enums import ConsentMethod

IDENTIFIER_MARKER = "@"

_HANDLE_RE = re.compile(r"^@[a-z0-9_]+$")
_HANDLE_STRIP_RE = re.compile(r"[^@a-z0-9_]")

ERR_HANDLE_FORMAT = "Username must be @lowercase_letters_numbers_underscores"
ERR_NAME_LENGTH = "Name must be at least 2 characters"

MIN_PARTIES = 2


class ActDecision(str, Enum):
    """Per-act decision. Absence from the acts map means undecided."""
    yes = "yes"
    no = "no"

    @classmethod
    def cycle(cls, current: Optional["ActDecision"]) -> Optional["ActDecision"]:
        # undecided -> yes -> no -> undecided
        if current is None:
            return cls.yes
        if current is cls.yes:
            return cls.no
        return None


# ─────────────────────────────────────────────
# IDENTIFIERS
# ─────────────────────────────────────────────

def normalize_identifier(raw: Optional[str]) -> str:
    """
    "@Jane.Doe!" -> "@janedoe"; free-text legal names pass through trimmed.
    """
    if not raw or not raw.strip():
        return ""
    trimmed = raw.strip()
    if trimmed.startswith(IDENTIFIER_MARKER):
        return _HANDLE_STRIP_RE.sub("", trimmed.lower())
    return trimmed


def validate_identifier(normalized: Optional[str]) -> Optional[str]:
    """Returns an error message, or None when valid (or empty)."""
    if not normalized or not normalized.strip():
        return None
    trimmed = normalized.strip()
    if trimmed.startswith(IDENTIFIER_MARKER):
        if not _HANDLE_RE.match(trimmed):
            return ERR_HANDLE_FORMAT
        return None
    if len(trimmed) < 2:
        return ERR_NAME_LENGTH
    return None


def _identity_key(identifier: str) -> str:
    # handles are already canonical; legal names compare case-insensitively
    return identifier if identifier.startswith(IDENTIFIER_MARKER) else identifier.casefold()


def valid_parties(parties: Iterable[str]) -> List[str]:
    """Distinct, non-empty, valid identifiers in their original order."""
    seen = set()
    out: List[str] = []
    for party in parties or []:
        trimmed = (party or "").strip()
        if not trimmed or validate_identifier(trimmed) is not None:
            continue
        key = _identity_key(trimmed)
        if key in seen:
            continue
        seen.add(key)
        out.append(trimmed)
    return out


def normalize_parties(parties: Iterable[str]) -> List[str]:
    """
    Normalizes each entry and drops blanks. Raises if any entry is invalid,
    listing every invalid entry in the error details.
    """
    normalized = [normalize_identifier(p) for p in parties or []]
    normalized = [p for p in normalized if p]
    invalid: Dict[str, str] = {}
    for party in normalized:
        err = validate_identifier(party)
        if err:
            invalid[party] = err
    if invalid:
        raise ValidationError(
            "Parties must be either @username or legal names (min 2 characters).",
            details={"invalidParties": invalid},
        )
    return normalized


# ─────────────────────────────────────────────
# FLOW READINESS
# ─────────────────────────────────────────────

def can_persist_draft(state) -> bool:
    return bool((getattr(state, "encounter_type", None) or "").strip())


def can_activate_or_share(state) -> bool:
    if not can_persist_draft(state):
        return False
    if not getattr(state, "method", None):
        return False
    return len(valid_parties(getattr(state, "parties", None) or [])) >= MIN_PARTIES


def validate_method(method: Optional[str]) -> Optional[str]:
    if method is None:
        return None
    try:
        return ConsentMethod(method).value
    except ValueError:
        raise ValidationError(f"Unknown documentation method: {method}.")


def validate_duration(
    start: Optional[datetime],
    duration_minutes: Optional[int],
    end: Optional[datetime],
) -> Tuple[Optional[datetime], Optional[int], Optional[datetime]]:
    """
    Returns (start, duration, end) with end computed as start + duration.
    A duration without a start cannot be anchored and is rejected.
    """
    start = as_utc(start)
    end = as_utc(end)

    if duration_minutes is None and end is not None and start is not None:
        delta = end - start
        duration_minutes = int(delta.total_seconds() // 60)
        if duration_minutes <= 0:
            raise ValidationError("Contract end time must be after its start time.")

    if duration_minutes is None:
        if end is not None and start is None:
            raise ValidationError("An end time requires a start time.")
        return start, None, None

    if duration_minutes <= 0:
        raise ValidationError("Contract duration must be positive.")
    if start is None:
        raise ValidationError("A contract duration requires a start time.")

    computed_end = start + timedelta(minutes=duration_minutes)
    if end is not None and end != computed_end:
        raise ValidationError("Contract end time must equal start time plus duration.")
    return start, duration_minutes, computed_end


def parse_acts(raw: Optional[Mapping[str, str]]) -> Dict[str, str]:
    acts: Dict[str, str] = {}
    for name, decision in (raw or {}).items():
        key = (name or "").strip()
        if not key:
            raise ValidationError("Act names must be non-empty.")
        if decision is None:
            continue
        try:
            acts[key] = ActDecision(decision).value
        except ValueError:
            raise ValidationError(f"Act '{key}' must be 'yes' or 'no'.")
    return acts


def require_reason(reason: Optional[str]) -> str:
    if not reason or not reason.strip():
        raise ValidationError("A reason is required.")
    return reason.strip()
