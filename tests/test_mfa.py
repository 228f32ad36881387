"""Unit tests for TOTP enrollment and challenge in auth/mfa.py.

Covers:
- A code generated for time T is accepted at T +/- 60s and rejected beyond
- State machine: disabled -> pending -> enabled, abandon, restart, Conflict
- A wrong confirmation code leaves the state unchanged
- MfaState rejects illegal combinations
"""

import pyotp
import pytest

from auth.errors import Conflict, MfaInvalidCode, NotFound, ValidationFailed
from auth.mfa import MfaEngine, normalize_code
from auth.models import MfaState, MfaStatus, User
from auth.store import UserStore

# Start of a 30-second step, so +/- whole steps land on step boundaries.
T = 1_700_000_010 - (1_700_000_010 % 30)


@pytest.fixture
def store() -> UserStore:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def engine(store) -> MfaEngine:
    return MfaEngine(store, issuer="LabLive", valid_window=2)


@pytest.fixture
def uid(store) -> int:
    return store.create_user(User(email="mfa@example.com", name="Mfa User", hashed_password="x"))


def _enable(engine: MfaEngine, uid: int) -> str:
    enrollment = engine.begin_setup(uid)
    engine.confirm_setup(uid, pyotp.TOTP(enrollment.secret).at(T), at=T)
    return enrollment.secret


# ---------------------------------------------------------------------------
# Tolerance window
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("offset", [-60, -30, 0, 30, 60])
def test_code_accepted_within_sixty_seconds(engine, offset):
    secret = pyotp.random_base32()
    code = pyotp.TOTP(secret).at(T)
    assert engine.verify_code(secret, code, at=T + offset)


@pytest.mark.parametrize("offset", [-600, -120, 120])
def test_code_rejected_outside_window(engine, offset):
    secret = "JBSWY3DPEHPK3PXP"
    code = pyotp.TOTP(secret).at(T)
    assert not engine.verify_code(secret, code, at=T + offset)


@pytest.mark.parametrize("code", ["", "12345", "abcdef", "1234567"])
def test_malformed_codes_rejected(engine, code):
    assert not engine.verify_code(pyotp.random_base32(), code, at=T)


def test_normalize_code_strips_separators():
    assert normalize_code(" 123 456 ") == "123456"
    assert normalize_code("123-456") == "123456"


def test_normalize_code_drops_non_ascii_digits():
    assert normalize_code("١٢٣٤٥٦") == ""
    assert normalize_code("１２3456") == "3456"


# ---------------------------------------------------------------------------
# Enrollment state machine
# ---------------------------------------------------------------------------


def test_begin_setup_returns_enrollment_and_sets_pending(engine, store, uid):
    enrollment = engine.begin_setup(uid)
    assert enrollment.uri.startswith("otpauth://totp/")
    assert "issuer=LabLive" in enrollment.uri
    assert enrollment.secret in enrollment.uri
    assert enrollment.qr_code.startswith("data:image/png;base64,")
    mfa = store.require(uid).mfa
    assert mfa.status is MfaStatus.pending
    assert mfa.pending_secret == enrollment.secret
    assert mfa.secret is None


def test_begin_setup_unknown_user(engine):
    with pytest.raises(NotFound):
        engine.begin_setup(4242)


def test_confirm_setup_promotes_pending_secret(engine, store, uid):
    secret = _enable(engine, uid)
    mfa = store.require(uid).mfa
    assert mfa.enabled
    assert mfa.secret == secret
    assert mfa.pending_secret is None


def test_wrong_confirmation_code_leaves_state_unchanged(engine, store, uid):
    enrollment = engine.begin_setup(uid)
    stale = pyotp.TOTP(enrollment.secret).at(T - 600)
    with pytest.raises(MfaInvalidCode):
        engine.confirm_setup(uid, stale, at=T)
    mfa = store.require(uid).mfa
    assert mfa.status is MfaStatus.pending
    assert mfa.pending_secret == enrollment.secret


def test_confirm_without_enrollment_is_validation_error(engine, uid):
    with pytest.raises(ValidationFailed):
        engine.confirm_setup(uid, "123456", at=T)


def test_restart_replaces_pending_secret(engine, store, uid):
    first = engine.begin_setup(uid)
    second = engine.begin_setup(uid)
    assert first.secret != second.secret
    with pytest.raises(MfaInvalidCode):
        engine.confirm_setup(uid, pyotp.TOTP(first.secret).at(T - 600), at=T)
    engine.confirm_setup(uid, pyotp.TOTP(second.secret).at(T), at=T)
    assert store.require(uid).mfa.secret == second.secret


def test_abandon_setup_returns_to_disabled(engine, store, uid):
    engine.begin_setup(uid)
    engine.abandon_setup(uid)
    assert store.require(uid).mfa == MfaState()


def test_begin_setup_on_enabled_account_conflicts(engine, store, uid):
    secret = _enable(engine, uid)
    with pytest.raises(Conflict):
        engine.begin_setup(uid)
    assert store.require(uid).mfa.secret == secret


# ---------------------------------------------------------------------------
# Challenge
# ---------------------------------------------------------------------------


def test_challenge_accepts_current_code_without_mutating(engine, store, uid):
    secret = _enable(engine, uid)
    before = store.require(uid).mfa
    engine.challenge(uid, pyotp.TOTP(secret).at(T + 30), at=T + 30)
    assert store.require(uid).mfa == before


def test_challenge_rejects_code_from_ten_minutes_ago(engine, uid):
    secret = _enable(engine, uid)
    with pytest.raises(MfaInvalidCode):
        engine.challenge(uid, pyotp.TOTP(secret).at(T - 600), at=T)


def test_challenge_requires_enabled_mfa(engine, uid):
    enrollment = engine.begin_setup(uid)
    with pytest.raises(MfaInvalidCode):
        engine.challenge(uid, pyotp.TOTP(enrollment.secret).at(T), at=T)


# ---------------------------------------------------------------------------
# MfaState invariants
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs",
    [
        {"status": MfaStatus.enabled},
        {"status": MfaStatus.enabled, "secret": "A", "pending_secret": "B"},
        {"status": MfaStatus.pending},
        {"status": MfaStatus.disabled, "secret": "A"},
    ],
)
def test_illegal_mfa_states_rejected(kwargs):
    with pytest.raises(ValueError):
        MfaState(**kwargs)
