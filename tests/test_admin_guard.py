"""
tests/test_admin_guard.py — Admin Authentication & Audit Attribution
=====================================================================
Every write to rules or interceptions goes through ``get_current_admin``.
Requests without a valid admin token are turned away before any handler
runs, and accepted requests are attributed to the token's ``sub`` claim in
``admin_log``.  The signing secret itself is checked when
``groupguard.api.deps`` is imported.
"""

from __future__ import annotations

import importlib
import os
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import jwt
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import make_admin_token
from groupguard.database.models import AdminLog
from groupguard.engine.evaluator import Candidate, Decision, DecisionAction


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


GUARDED = [
    ("get", "/api/admin/rules"),
    ("delete", "/api/admin/rules/1"),
    ("delete", "/api/moderation/interceptions/abc123"),
    ("post", "/api/moderation/interceptions/abc123/reverse"),
]


# ===========================================================================
# Token checks
# ===========================================================================
class TestAdminToken:
    @pytest.mark.parametrize("method,path", GUARDED)
    def test_missing_header_401(self, client, method, path):
        assert getattr(client, method)(path).status_code == 401

    @pytest.mark.parametrize("method,path", GUARDED)
    def test_member_token_403(self, client, method, path):
        token = make_admin_token(sub="555", username="Member", is_admin=False)
        assert getattr(client, method)(path, headers=_auth(token)).status_code == 403

    def test_non_bearer_scheme_401(self, client, admin_token):
        resp = client.get("/api/admin/rules", headers={"Authorization": f"Token {admin_token}"})
        assert resp.status_code == 401

    def test_foreign_signature_401(self, client):
        token = jwt.encode({"sub": "1", "is_admin": True}, "z" * 48, algorithm="HS256")
        assert client.get("/api/admin/rules", headers=_auth(token)).status_code == 401

    def test_expired_token_401(self, client):
        from groupguard.api.deps import JWT_ALGORITHM, JWT_SECRET

        token = jwt.encode(
            {"sub": "1", "is_admin": True, "exp": datetime.now(UTC) - timedelta(minutes=5)},
            JWT_SECRET,
            algorithm=JWT_ALGORITHM,
        )
        assert client.get("/api/admin/rules", headers=_auth(token)).status_code == 401

    def test_dismissal_rejected_leaves_log_intact(self, client, runtime):
        entry = runtime.log.record(
            Candidate(id="usr_1", display_name="Alice"),
            Decision(action=DecisionAction.REJECT, rule_id="1", rule_name="r", reason="x"),
        )
        resp = client.delete(f"/api/moderation/interceptions/{entry.id}")
        assert resp.status_code == 401
        assert runtime.log.get(entry.id) is entry


# ===========================================================================
# Audit attribution
# ===========================================================================
class TestAuditAttribution:
    def test_rule_write_records_token_subject(self, client, db_engine):
        token = make_admin_token(sub="4242", username="Moderator")
        resp = client.put(
            "/api/admin/rules",
            json={"name": "No spam", "type": "KEYWORD_BLOCK", "config": {"keywords": ["spam"]}},
            headers=_auth(token),
        )
        assert resp.status_code == 200

        with Session(db_engine) as session:
            rows = session.scalars(select(AdminLog)).all()
        assert len(rows) == 1
        assert rows[0].actor_id == "4242"
        assert rows[0].action_type == "CREATE"
        assert rows[0].target_table == "automod_rules"
        assert rows[0].ip_address == "testclient"

    def test_priority_write_records_token_subject(self, client, db_engine):
        token = make_admin_token(sub="777")
        client.put("/api/admin/rules/priority", json={"priority": ["KEYWORD_BLOCK"]}, headers=_auth(token))

        with Session(db_engine) as session:
            row = session.scalars(select(AdminLog).where(AdminLog.target_table == "settings")).one()
        assert row.actor_id == "777"
        assert row.target_id == "rules.priority"

    def test_refused_write_records_nothing(self, client, db_engine):
        token = make_admin_token(sub="555", is_admin=False)
        client.put(
            "/api/admin/rules",
            json={"name": "x", "type": "KEYWORD_BLOCK", "config": {}},
            headers=_auth(token),
        )
        with Session(db_engine) as session:
            assert session.scalars(select(AdminLog)).all() == []


# ===========================================================================
# Signing secret checked at import
# ===========================================================================
class TestSigningSecret:
    @pytest.fixture(autouse=True)
    def _reload_with_original_secret(self):
        original = os.environ.get("JWT_SECRET")
        yield
        if original is not None:
            os.environ["JWT_SECRET"] = original
        import groupguard.api.deps as deps_mod
        importlib.reload(deps_mod)

    def _import_with(self, secret: str | None) -> str:
        env = {} if secret is None else {"JWT_SECRET": secret}
        with patch.dict(os.environ, env):
            if secret is None:
                os.environ.pop("JWT_SECRET", None)
            import groupguard.api.deps as deps_mod
            importlib.reload(deps_mod)
            return deps_mod.JWT_SECRET

    @pytest.mark.parametrize("secret,message", [
        (None, "not set"),
        ("", "not set"),
        ("groupguard-dev-secret-change-me", "known weak default"),
        ("short-but-not-weak", "too short"),
    ])
    def test_unusable_secret_refused(self, secret, message):
        with pytest.raises(RuntimeError, match=message):
            self._import_with(secret)

    def test_strong_secret_accepted(self):
        assert self._import_with("m" * 40) == "m" * 40
