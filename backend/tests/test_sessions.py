"""
Session and account tests.

Verifies:
- Tokens resolve to their user and are stored only as digests
- Expired, idle and revoked sessions stop authenticating
- Deactivating an account closes its sessions
"""

from datetime import timedelta

import pytest

from app.models import SessionToken
from app.services import auth_service, session_service
from app.time_utils import utcnow

from conftest import PASSWORD, auth_headers


class TestSessions:

    def test_token_round_trip(self, db_session, customer):
        session, token = session_service.create_session(customer.id, user_agent="pytest")

        assert session.token_hash != token
        assert session.token_hash == session_service.hash_token(token)

        context = session_service.validate_session(token)
        assert context.user.id == customer.id
        assert context.role == "customer"

    def test_unknown_user(self, db_session):
        with pytest.raises(ValueError, match="not found"):
            session_service.create_session(4242)

    def test_expired(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_idle_timeout_revokes(self, db_session, customer, app):
        session, token = session_service.create_session(customer.id)
        idle = app.config["SESSION_IDLE_MINUTES"]
        session.last_used_at = utcnow() - timedelta(minutes=idle + 1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        stored = db_session.get(SessionToken, session.id)
        assert stored.is_revoked
        assert stored.revoked_reason == "Idle timeout"

    def test_logout_is_one_shot(self, db_session, customer):
        _, token = session_service.create_session(customer.id)
        assert session_service.revoke_session(token)
        assert not session_service.revoke_session(token)
        assert session_service.validate_session(token) is None

    def test_revoke_user_sessions(self, db_session, customer, other_customer):
        _, first = session_service.create_session(customer.id)
        _, second = session_service.create_session(customer.id)
        _, theirs = session_service.create_session(other_customer.id)

        assert session_service.revoke_user_sessions(customer.id, "test") == 2
        assert session_service.validate_session(first) is None
        assert session_service.validate_session(second) is None
        assert session_service.validate_session(theirs) is not None


class TestAccounts:

    def test_authenticate_by_email(self, db_session, customer):
        assert auth_service.authenticate(customer.email, PASSWORD).id == customer.id
        assert auth_service.authenticate(customer.email, "Wrong12345") is None

    def test_inactive_user_cannot_log_in(self, db_session, customer):
        customer.is_active = False
        db_session.commit()
        assert auth_service.authenticate("lan", PASSWORD) is None

    def test_blank_profile_values_are_cleared(self, db_session, customer):
        auth_service.update_profile(customer, {"phone": "   ", "address": " 12 Hai Bà Trưng "})
        assert customer.phone is None
        assert customer.address == "12 Hai Bà Trưng"


class TestDeactivateCommand:

    def test_deactivate_closes_sessions(self, app, client, db_session, customer, customer_headers):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["users", "deactivate", "lan"])

        assert "PASS Deactivated lan; revoked 1 session(s)" in result.output
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401

    def test_unknown_username(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["users", "deactivate", "nobody"])
        assert "FAIL" in result.output

    def test_bad_token_header(self, client, db_session):
        assert client.get("/api/auth/me", headers=auth_headers("")).status_code == 401
