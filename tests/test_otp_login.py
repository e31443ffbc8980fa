"""Tests for the two-phase OTP login flow (service + HTTP)."""
import re
from datetime import datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.errors import EmailMismatch, InvalidOtp, InvalidPassword, NotificationDeliveryFailed, UnknownUser
from app.portal.mailer import LogMailer, Mailer
from app.portal.models import AuditEvent, Base, Role, StateValue, User
from app.portal.modules.otp_login import service as otp_service
from app.portal.modules.otp_login.service import (
    OTP_STATE_KEY,
    SLOT_PER_ATTEMPT,
    LoginFormState,
    LoginPhase,
    OtpLoginService,
    otp_matches,
)
from app.portal.state import KeyValueState


class FailingMailer(Mailer):
    def send(self, to_addr, subject, body, *, kind):
        raise NotificationDeliveryFailed(to_addr, "connection refused")


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MAIL_BACKEND", "log")
    monkeypatch.delenv("OTP_SLOT_MODE", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        student = Role(key="student", name="Student")
        alice = User(name="Alice", email="alice@example.com", password_hash=generate_password_hash("alice-pw"))
        bob = User(name="Bob", email="bob@example.com", password_hash=generate_password_hash("bob-pw"))
        alice.roles.append(student)
        bob.roles.append(student)
        # Two accounts sharing a name make that name unusable for login.
        twin1 = User(name="Sam", email="sam1@example.com", password_hash=generate_password_hash("pw"))
        twin2 = User(name="Sam", email="sam2@example.com", password_hash=generate_password_hash("pw"))
        s.add_all([student, alice, bob, twin1, twin2])

    return app


CSRF = "test-csrf-token"


def _with_csrf(client):
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return client


@pytest.fixture()
def client(app):
    return _with_csrf(app.test_client())


def _post_login(client, data, **kwargs):
    return client.post("/auth/login", data={"csrf_token": CSRF, **data}, **kwargs)


def _sequence(monkeypatch, *codes):
    it = iter(codes)
    monkeypatch.setattr(otp_service, "generate_otp", lambda: next(it))


# ---------- Service: phase 1 ----------
def test_unknown_username_stores_no_otp(app):
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        with pytest.raises(UnknownUser):
            svc.issue_code("Nobody", "nobody@example.com")
        assert KeyValueState(s).get(OTP_STATE_KEY) is None
        assert svc.mailer.outbox == []


def test_ambiguous_username_is_unknown_user(app):
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        with pytest.raises(UnknownUser):
            svc.issue_code("Sam", "sam1@example.com")
        assert KeyValueState(s).get(OTP_STATE_KEY) is None


@pytest.mark.parametrize("email", ["Alice@example.com", "alice@example.co", " alice@example.com"])
def test_email_mismatch_is_case_sensitive(app, email):
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        with pytest.raises(EmailMismatch):
            svc.issue_code("Alice", email)
        assert KeyValueState(s).get(OTP_STATE_KEY) is None


def test_issue_code_stores_six_digit_int_and_mails_it(app):
    with session_scope(app) as s:
        mailer = LogMailer()
        issued = OtpLoginService(s, mailer).issue_code("Alice", "alice@example.com")
        code = KeyValueState(s).get(OTP_STATE_KEY)

    assert isinstance(code, int)
    assert 100000 <= code <= 999999
    assert issued.delivered is True
    assert issued.form_state.phase == LoginPhase.AWAITING_OTP_AND_PASSWORD
    assert issued.form_state.username == "Alice"
    assert len(mailer.outbox) == 1
    msg = mailer.outbox[0]
    assert msg.to_addr == "alice@example.com"
    assert msg.subject == "Your OTP for Login"
    assert str(code) in msg.body


def test_generate_otp_range():
    for _ in range(200):
        code = otp_service.generate_otp()
        assert 100000 <= code <= 999999


def test_delivery_failure_still_moves_forward(app):
    with session_scope(app) as s:
        issued = OtpLoginService(s, FailingMailer()).issue_code("Alice", "alice@example.com")
        assert issued.delivered is False
        assert issued.form_state.otp_sent is True
        assert KeyValueState(s).get(OTP_STATE_KEY) is not None


# ---------- Service: phase 2 ----------
@pytest.mark.parametrize("as_type", [str, int])
def test_correct_code_and_password_authenticates(app, monkeypatch, as_type):
    _sequence(monkeypatch, 123456)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        issued = svc.issue_code("Alice", "alice@example.com")
        user = svc.verify_and_authenticate(issued.form_state, as_type(123456), "alice-pw")
        assert user.email == "alice@example.com"


def test_wrong_password_keeps_code_for_retry(app, monkeypatch):
    _sequence(monkeypatch, 654321)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        issued = svc.issue_code("Alice", "alice@example.com")
        with pytest.raises(InvalidPassword):
            svc.verify_and_authenticate(issued.form_state, "654321", "nope")
        assert issued.form_state.phase == LoginPhase.AWAITING_OTP_AND_PASSWORD
        user = svc.verify_and_authenticate(issued.form_state, "654321", "alice-pw")
        assert user.name == "Alice"


def test_wrong_code_is_invalid_otp(app, monkeypatch):
    _sequence(monkeypatch, 111111)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        issued = svc.issue_code("Alice", "alice@example.com")
        with pytest.raises(InvalidOtp):
            svc.verify_and_authenticate(issued.form_state, "111112", "alice-pw")
        with pytest.raises(InvalidOtp):
            svc.verify_and_authenticate(issued.form_state, "abc", "alice-pw")


def test_inactive_user_cannot_authenticate(app, monkeypatch):
    _sequence(monkeypatch, 222222)
    with session_scope(app) as s:
        s.query(User).filter(User.name == "Alice").one().is_active = False
        s.flush()
        svc = OtpLoginService(s, LogMailer())
        issued = svc.issue_code("Alice", "alice@example.com")
        with pytest.raises(InvalidPassword):
            svc.verify_and_authenticate(issued.form_state, 222222, "alice-pw")


def test_global_slot_is_shared_between_users(app, monkeypatch):
    _sequence(monkeypatch, 111111, 222222)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer())
        alice_attempt = svc.issue_code("Alice", "alice@example.com")
        bob_attempt = svc.issue_code("Bob", "bob@example.com")

        # Bob's request replaced Alice's pending code.
        with pytest.raises(InvalidOtp):
            svc.verify_and_authenticate(alice_attempt.form_state, "111111", "alice-pw")
        assert svc.verify_and_authenticate(bob_attempt.form_state, "222222", "bob-pw").name == "Bob"


def test_otp_matches_is_numeric():
    assert otp_matches("123456", 123456)
    assert otp_matches(" 123456 ", 123456)
    assert otp_matches("123456.0", 123456)
    assert not otp_matches("123457", 123456)
    assert not otp_matches("", 123456)
    assert not otp_matches("123456", None)
    assert not otp_matches("NaN", 123456)


# ---------- Service: per-attempt slots ----------
def test_per_attempt_slots_do_not_clobber(app, monkeypatch):
    _sequence(monkeypatch, 111111, 222222)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT)
        alice_attempt = svc.issue_code("Alice", "alice@example.com")
        bob_attempt = svc.issue_code("Bob", "bob@example.com")

        assert alice_attempt.form_state.attempt_id
        assert alice_attempt.form_state.attempt_id != bob_attempt.form_state.attempt_id
        assert KeyValueState(s).get(OTP_STATE_KEY) is None
        assert svc.verify_and_authenticate(alice_attempt.form_state, "111111", "alice-pw").name == "Alice"
        assert svc.verify_and_authenticate(bob_attempt.form_state, 222222, "bob-pw").name == "Bob"


def test_per_attempt_code_is_single_use(app, monkeypatch):
    _sequence(monkeypatch, 333333)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT)
        issued = svc.issue_code("Alice", "alice@example.com")
        svc.verify_and_authenticate(issued.form_state, "333333", "alice-pw")
        with pytest.raises(InvalidOtp):
            svc.verify_and_authenticate(issued.form_state, "333333", "alice-pw")


def test_per_attempt_code_expires(app, monkeypatch):
    _sequence(monkeypatch, 444444)
    clock = {"now": datetime(2026, 1, 1, 12, 0, 0)}
    with session_scope(app) as s:
        svc = OtpLoginService(
            s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT, ttl_seconds=60, now=lambda: clock["now"]
        )
        issued = svc.issue_code("Alice", "alice@example.com")
        clock["now"] += timedelta(seconds=61)
        with pytest.raises(InvalidOtp):
            svc.verify_and_authenticate(issued.form_state, "444444", "alice-pw")


def test_per_attempt_without_attempt_id_is_invalid(app):
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT)
        form_state = LoginFormState(otp_sent=True, username="Alice", email="alice@example.com")
        with pytest.raises(InvalidOtp):
            svc.verify_and_authenticate(form_state, "123456", "alice-pw")


def _slot_rows(s) -> int:
    return s.query(StateValue).filter(StateValue.key.startswith(f"{OTP_STATE_KEY}:")).count()


def test_expired_and_abandoned_attempts_do_not_accumulate(app):
    clock = {"now": datetime(2026, 1, 1, 12, 0, 0)}
    with session_scope(app) as s:
        svc = OtpLoginService(
            s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT, ttl_seconds=60, now=lambda: clock["now"]
        )
        for _ in range(50):
            svc.issue_code("Alice", "alice@example.com")
            clock["now"] += timedelta(seconds=61)
        assert _slot_rows(s) == 1


def test_expired_code_is_removed_when_checked(app, monkeypatch):
    _sequence(monkeypatch, 555555)
    clock = {"now": datetime(2026, 1, 1, 12, 0, 0)}
    with session_scope(app) as s:
        svc = OtpLoginService(
            s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT, ttl_seconds=60, now=lambda: clock["now"]
        )
        issued = svc.issue_code("Alice", "alice@example.com")
        clock["now"] += timedelta(seconds=61)
        assert svc.stored_code(issued.form_state) is None
        assert _slot_rows(s) == 0


def test_new_attempt_replaces_previous_one(app, monkeypatch):
    _sequence(monkeypatch, 111111, 222222)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT)
        first = svc.issue_code("Alice", "alice@example.com")
        second = svc.issue_code("Alice", "alice@example.com", previous=first.form_state)
        assert _slot_rows(s) == 1
        assert svc.stored_code(first.form_state) is None
        assert svc.stored_code(second.form_state) == 222222


def test_successful_login_removes_attempt(app, monkeypatch):
    _sequence(monkeypatch, 333333)
    with session_scope(app) as s:
        svc = OtpLoginService(s, LogMailer(), slot_mode=SLOT_PER_ATTEMPT)
        issued = svc.issue_code("Alice", "alice@example.com")
        svc.verify_and_authenticate(issued.form_state, "333333", "alice-pw")
        assert _slot_rows(s) == 0


def test_unknown_slot_mode_rejected(app):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            OtpLoginService(s, LogMailer(), slot_mode="per_user")


def test_form_state_round_trips_through_session_dict():
    state = LoginFormState(otp_sent=True, username="Alice", email="alice@example.com", attempt_id="abc")
    assert LoginFormState.from_dict(state.to_dict()) == state
    assert LoginFormState.from_dict(None).phase == LoginPhase.AWAITING_CREDENTIALS


# ---------- HTTP ----------
def _sent_code(app) -> str:
    body = app.extensions["mailer"].outbox[-1].body
    return re.search(r"(\d{6})", body).group(1)


def test_login_page_starts_with_send_otp(client):
    r = client.get("/auth/login")
    assert r.status_code == 200
    assert b"Send OTP" in r.data
    assert b'name="otp"' not in r.data


def test_full_login_flow(app, client):
    r = _post_login(client, {"username": "Alice", "email": "alice@example.com"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"An OTP has been sent to your email address." in r.data
    assert b'name="otp"' in r.data
    assert b"readonly" in r.data

    code = _sent_code(app)
    r = _post_login(client, {"otp": code, "password": "alice-pw"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/")

    with client.session_transaction() as sess:
        assert sess.get("user_id") is not None
        assert "login_form" not in sess

    with session_scope(app) as s:
        alice = s.query(User).filter(User.name == "Alice").one()
        events = s.query(AuditEvent).filter(AuditEvent.action == "auth.login").all()
        assert [e.actor_user_id for e in events] == [alice.id]


def test_unknown_user_flashes_error_and_stays_in_phase_one(app, client):
    r = _post_login(client, {"username": "Nobody", "email": "x@example.com"}, follow_redirects=True)
    assert b"Invalid username." in r.data
    assert b"Send OTP" in r.data
    assert app.extensions["mailer"].outbox == []


def test_email_mismatch_flashes_error(client):
    r = _post_login(client, {"username": "Alice", "email": "ALICE@example.com"}, follow_redirects=True)
    assert b"Email does not match." in r.data


def test_invalid_otp_then_wrong_password_then_success(app, client):
    _post_login(client, {"username": "Alice", "email": "alice@example.com"})
    code = _sent_code(app)
    wrong = "100000" if code != "100000" else "100001"

    r = _post_login(client, {"otp": wrong, "password": "alice-pw"}, follow_redirects=True)
    assert b"Invalid OTP." in r.data
    assert b'name="otp"' in r.data

    r = _post_login(client, {"otp": code, "password": "bad"}, follow_redirects=True)
    assert b"Invalid password." in r.data
    assert b'name="otp"' in r.data

    r = _post_login(client, {"otp": code, "password": "alice-pw"}, follow_redirects=True)
    assert b"You have been successfully logged in." in r.data


def test_mail_failure_is_reported_but_flow_continues(app, client):
    app.extensions["mailer"] = FailingMailer()
    r = _post_login(client, {"username": "Alice", "email": "alice@example.com"}, follow_redirects=True)
    assert b"There was a problem sending the OTP email." in r.data
    assert b'name="otp"' in r.data


def test_restart_clears_pending_login(client):
    _post_login(client, {"username": "Alice", "email": "alice@example.com"})
    r = client.get("/auth/login?restart=1", follow_redirects=True)
    assert b"Send OTP" in r.data
    with client.session_transaction() as sess:
        assert "login_form" not in sess


@pytest.fixture()
def per_attempt_app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'attempts.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MAIL_BACKEND", "log")
    monkeypatch.setenv("OTP_SLOT_MODE", "per_attempt")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add_all(
            [
                User(name="Alice", email="alice@example.com", password_hash=generate_password_hash("alice-pw")),
                User(name="Bob", email="bob@example.com", password_hash=generate_password_hash("bob-pw")),
            ]
        )
    return app


def test_per_attempt_mode_over_http(per_attempt_app):
    app = per_attempt_app
    alice, bob = _with_csrf(app.test_client()), _with_csrf(app.test_client())
    _post_login(alice, {"username": "Alice", "email": "alice@example.com"})
    alice_code = _sent_code(app)
    _post_login(bob, {"username": "Bob", "email": "bob@example.com"})

    r = _post_login(alice, {"otp": alice_code, "password": "alice-pw"}, follow_redirects=False)
    assert r.status_code == 302
    with alice.session_transaction() as sess:
        assert sess.get("user_id") is not None


def test_restart_drops_pending_attempt_code(per_attempt_app):
    app = per_attempt_app
    client = _with_csrf(app.test_client())
    _post_login(client, {"username": "Alice", "email": "alice@example.com"})
    with session_scope(app) as s:
        assert _slot_rows(s) == 1

    client.get("/auth/login?restart=1")
    with session_scope(app) as s:
        assert _slot_rows(s) == 0


def test_login_post_without_csrf_token_is_rejected(app):
    client = app.test_client()
    client.get("/auth/login")
    r = client.post("/auth/login", data={"username": "Alice", "email": "alice@example.com"})
    assert r.status_code == 400
    assert b"CSRF" in r.data
    assert app.extensions["mailer"].outbox == []


def test_login_form_token_is_accepted(app):
    client = app.test_client()
    client.get("/auth/login")
    with client.session_transaction() as sess:
        token = sess["csrf_token"]
    r = client.post("/auth/login", data={"csrf_token": token, "username": "Alice", "email": "alice@example.com"})
    assert r.status_code == 302
    assert len(app.extensions["mailer"].outbox) == 1


def test_logout_clears_session(app, client):
    _post_login(client, {"username": "Alice", "email": "alice@example.com"})
    _post_login(client, {"otp": _sent_code(app), "password": "alice-pw"})
    r = client.get("/auth/logout")
    assert r.status_code == 302
    with client.session_transaction() as sess:
        assert "user_id" not in sess
