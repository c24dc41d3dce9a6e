from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from consentflow.core.errors import ValidationError
from consentflow.services.validation import (
    ERR_HANDLE_FORMAT,
    ERR_NAME_LENGTH,
    ActDecision,
    can_activate_or_share,
    can_persist_draft,
    normalize_identifier,
    normalize_parties,
    parse_acts,
    require_reason,
    valid_parties,
    validate_duration,
    validate_identifier,
    validate_method,
)


def state(encounter_type="Dating", method="signature", parties=("@alice", "@bob")):
    return SimpleNamespace(encounter_type=encounter_type, method=method, parties=list(parties))


def test_normalize_identifier_lowercases_and_strips_handles():
    assert normalize_identifier("  @Jane.Doe!  ") == "@janedoe"
    assert normalize_identifier("@Ab_1") == "@ab_1"


def test_normalize_identifier_keeps_legal_names():
    assert normalize_identifier("  Jane Doe ") == "Jane Doe"
    assert normalize_identifier("   ") == ""
    assert normalize_identifier(None) == ""


def test_validate_identifier_examples():
    # raw, un-normalized handle is rejected
    assert validate_identifier("@Ab_1") == ERR_HANDLE_FORMAT
    assert validate_identifier("@ab_1") is None
    assert validate_identifier("Jane Doe") is None
    assert validate_identifier("J") == ERR_NAME_LENGTH
    assert validate_identifier("") is None
    assert validate_identifier("@") == ERR_HANDLE_FORMAT


def test_valid_parties_are_distinct_and_skip_blanks():
    assert valid_parties(["@alice", "", "@alice", "Jane Doe", "jane doe", "J"]) == ["@alice", "Jane Doe"]


def test_normalize_parties_lists_every_invalid_entry():
    with pytest.raises(ValidationError) as exc:
        normalize_parties(["@alice", "J", "K", ""])
    assert set(exc.value.details["invalidParties"]) == {"J", "K"}


def test_normalize_parties_drops_blank_slots():
    assert normalize_parties(["@Alice", "", "  ", "Jane Doe"]) == ["@alice", "Jane Doe"]


def test_can_persist_draft_needs_encounter_type_only():
    assert can_persist_draft(state(method=None, parties=())) is True
    assert can_persist_draft(state(encounter_type="  ")) is False


def test_can_activate_or_share_needs_method_and_two_parties():
    assert can_activate_or_share(state()) is True
    assert can_activate_or_share(state(method=None)) is False
    assert can_activate_or_share(state(parties=("@alice",))) is False
    assert can_activate_or_share(state(parties=("@alice", "@alice"))) is False
    assert can_activate_or_share(state(parties=("@alice", "J"))) is False


def test_act_decision_cycle():
    assert ActDecision.cycle(None) is ActDecision.yes
    assert ActDecision.cycle(ActDecision.yes) is ActDecision.no
    assert ActDecision.cycle(ActDecision.no) is None


def test_parse_acts_rejects_unknown_decisions():
    assert parse_acts({"kissing": "yes", "touching": None}) == {"kissing": "yes"}
    with pytest.raises(ValidationError):
        parse_acts({"kissing": "maybe"})


def test_validate_method():
    assert validate_method("voice") == "voice"
    assert validate_method(None) is None
    with pytest.raises(ValidationError):
        validate_method("fax")


def test_validate_duration_computes_end():
    start = datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc)
    assert validate_duration(start, 90, None) == (start, 90, start + timedelta(minutes=90))


def test_validate_duration_derives_minutes_from_end():
    start = datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc)
    assert validate_duration(start, None, start + timedelta(hours=2))[1] == 120


@pytest.mark.parametrize("minutes", [0, -5])
def test_validate_duration_rejects_non_positive(minutes):
    start = datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        validate_duration(start, minutes, None)


def test_validate_duration_rejects_mismatched_end_and_unanchored_duration():
    start = datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        validate_duration(start, 60, start + timedelta(minutes=61))
    with pytest.raises(ValidationError):
        validate_duration(None, 60, None)


def test_require_reason():
    assert require_reason("  changed my mind ") == "changed my mind"
    with pytest.raises(ValidationError):
        require_reason("   ")
