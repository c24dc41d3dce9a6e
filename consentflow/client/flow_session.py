"""
Client-side draft state for the contract-creation flow.

One ConsentFlowSession per flow. It is created when the user enters
contract creation, persisted by the caller between screens (``snapshot`` /
``hydrate``), turned into a create request with ``to_contract_payload`` and
reset once the server returns a contract id or the flow is abandoned.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from consentflow.core.timeutil import as_utc
from consentflow.models.enums import ConsentMethod
from consentflow.schemas.contracts import ContractCreate
from consentflow.services import validation
from consentflow.services.validation import ActDecision

STALE_AFTER_SECONDS = 5 * 60

# flow fields that carry method artifact references
ARTIFACT_FIELDS = (
    "signature1",
    "signature2",
    "photo_url",
    "audio_url",
    "credential_id",
    "credential_public_key",
    "authenticated_at",
)


@dataclass
class UserPreferences:
    default_university_id: Optional[str] = None
    state_of_residence: Optional[str] = None
    default_encounter_type: Optional[str] = None
    default_contract_duration: Optional[int] = None


@dataclass
class ConsentFlowState:
    university_id: str = ""
    state_code: str = ""
    encounter_type: str = ""
    parties: List[str] = field(default_factory=lambda: ["", ""])
    intimate_acts: Dict[str, str] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    end_time: Optional[datetime] = None
    method: Optional[str] = None
    draft_id: Optional[str] = None
    is_collaborative: bool = False
    contract_text: Optional[str] = None
    signature1: Optional[str] = None
    signature2: Optional[str] = None
    photo_url: Optional[str] = None
    audio_url: Optional[str] = None
    credential_id: Optional[str] = None
    credential_public_key: Optional[str] = None
    authenticated_at: Optional[str] = None
    last_edited_at: Optional[float] = None

    @classmethod
    def defaults(cls, preferences: Optional[UserPreferences] = None) -> "ConsentFlowState":
        prefs = preferences or UserPreferences()
        return cls(
            university_id=prefs.default_university_id or "",
            state_code=prefs.state_of_residence or "",
            encounter_type=prefs.default_encounter_type or "",
            duration_minutes=prefs.default_contract_duration or None,
        )


_STATE_FIELDS = {f.name for f in fields(ConsentFlowState)}


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def _parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if _non_empty_str(value):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


class ConsentFlowSession:
    def __init__(
        self,
        preferences: Optional[UserPreferences] = None,
        clock: Callable[[], float] = time.time,
        stale_after_seconds: float = STALE_AFTER_SECONDS,
    ):
        self.preferences = preferences
        self.clock = clock
        self.stale_after_seconds = stale_after_seconds
        self.state = ConsentFlowState.defaults(preferences)
        self.hydrated = False

    # ---------------------------
    # persistence
    # ---------------------------

    def hydrate(self, saved: Optional[Mapping[str, Any]]) -> ConsentFlowState:
        """
        Restore a saved snapshot field by field. Anything malformed falls back
        to the preference-derived default instead of failing the flow.
        """
        base = ConsentFlowState.defaults(self.preferences)
        saved = saved or {}

        def pick_str(name: str) -> Any:
            value = saved.get(name)
            return value if _non_empty_str(value) else getattr(base, name)

        parties = saved.get("parties")
        acts = saved.get("intimate_acts")
        duration = saved.get("duration_minutes")
        method = saved.get("method")

        self.state = ConsentFlowState(
            university_id=pick_str("university_id"),
            state_code=pick_str("state_code"),
            encounter_type=pick_str("encounter_type"),
            parties=list(parties) if isinstance(parties, list) and parties else base.parties,
            intimate_acts=self._valid_acts(acts) or base.intimate_acts,
            start_time=_parse_dt(saved.get("start_time")) or base.start_time,
            duration_minutes=duration if isinstance(duration, int) and duration > 0 else base.duration_minutes,
            end_time=_parse_dt(saved.get("end_time")) or base.end_time,
            method=method if method in {m.value for m in ConsentMethod} else base.method,
            draft_id=saved.get("draft_id") if _non_empty_str(saved.get("draft_id")) else None,
            is_collaborative=bool(saved.get("is_collaborative", False)),
            contract_text=saved.get("contract_text") if _non_empty_str(saved.get("contract_text")) else None,
            last_edited_at=saved.get("last_edited_at") if isinstance(saved.get("last_edited_at"), (int, float)) else None,
        )
        # artifact references are not restored; capture happens again
        self.hydrated = True
        return self.state

    def snapshot(self) -> Dict[str, Any]:
        data = asdict(self.state)
        for name in ("start_time", "end_time"):
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data

    @staticmethod
    def _valid_acts(raw: Any) -> Dict[str, str]:
        if not isinstance(raw, Mapping):
            return {}
        allowed = {d.value for d in ActDecision}
        return {k: v for k, v in raw.items() if isinstance(k, str) and k and v in allowed}

    # ---------------------------
    # edits
    # ---------------------------

    def update(self, **changes: Any) -> ConsentFlowState:
        unknown = set(changes) - _STATE_FIELDS
        if unknown:
            raise KeyError(f"unknown flow fields: {sorted(unknown)}")
        for name, value in changes.items():
            setattr(self.state, name, value)
        if {"start_time", "duration_minutes"} & set(changes):
            self._recompute_end()
        self.state.last_edited_at = self.clock()
        return self.state

    def toggle_act(self, name: str) -> Optional[ActDecision]:
        current = self.state.intimate_acts.get(name)
        nxt = ActDecision.cycle(ActDecision(current) if current else None)
        acts = dict(self.state.intimate_acts)
        if nxt is None:
            acts.pop(name, None)
        else:
            acts[name] = nxt.value
        self.update(intimate_acts=acts)
        return nxt

    def _recompute_end(self) -> None:
        start, minutes = self.state.start_time, self.state.duration_minutes
        if start is not None and minutes and minutes > 0:
            self.state.end_time = start + timedelta(minutes=minutes)
        else:
            self.state.end_time = None

    def reset(self) -> None:
        self.state = ConsentFlowState.defaults(self.preferences)

    def reset_if_stale(self) -> bool:
        """Reset unless the flow was edited within the stale window."""
        last = self.state.last_edited_at
        if last is not None and self.clock() - last < self.stale_after_seconds:
            return False
        self.reset()
        return True

    # ---------------------------
    # readiness
    # ---------------------------

    def can_persist_draft(self) -> bool:
        return validation.can_persist_draft(self.state)

    def can_activate_or_share(self) -> bool:
        return validation.can_activate_or_share(self.state)

    def artifacts(self) -> Dict[str, str]:
        return {
            name: getattr(self.state, name)
            for name in ARTIFACT_FIELDS
            if getattr(self.state, name)
        }

    def to_contract_payload(self) -> ContractCreate:
        """Blank party slots are dropped; the server validates the rest."""
        s = self.state
        return ContractCreate(
            university_id=s.university_id or None,
            state_code=s.state_code or None,
            encounter_type=s.encounter_type,
            parties=[p for p in s.parties if (p or "").strip()],
            intimate_acts=dict(s.intimate_acts),
            start_time=s.start_time,
            duration_minutes=s.duration_minutes,
            end_time=s.end_time,
            method=s.method,
            artifacts=self.artifacts(),
            contract_text=s.contract_text,
            is_collaborative=s.is_collaborative,
        )
