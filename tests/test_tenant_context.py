from types import SimpleNamespace

import pytest
from sqlalchemy import event
from sqlalchemy.orm import Session

from app.core.tenant_context import CONTEXT_KEY, apply_tenant_context, tenant_scope


class RecordingConnection:
    def __init__(self, dialect="postgresql"):
        self.dialect = SimpleNamespace(name=dialect)
        self.calls = []

    def execute(self, statement, params=None):
        self.calls.append((str(statement), params))


def test_context_is_applied_at_every_transaction_begin():
    assert event.contains(Session, "after_begin", apply_tenant_context)


def test_begin_applies_transaction_local_settings():
    connection = RecordingConnection()
    apply_tenant_context(SimpleNamespace(info={CONTEXT_KEY: (7, 42)}), None, connection)
    assert connection.calls == [
        ("SELECT set_config('app.current_tenant_id', :tenant_id, true)", {"tenant_id": "7"}),
        ("SELECT set_config('app.current_user_id', :user_id, true)", {"user_id": "42"}),
    ]


def test_begin_without_context_or_on_sqlite_is_a_no_op():
    pg = RecordingConnection()
    apply_tenant_context(SimpleNamespace(info={}), None, pg)
    assert pg.calls == []

    sqlite = RecordingConnection(dialect="sqlite")
    apply_tenant_context(SimpleNamespace(info={CONTEXT_KEY: (7, 42)}), None, sqlite)
    assert sqlite.calls == []


def test_context_survives_commits_inside_the_scope(db_session, tenant):
    with tenant_scope(db_session, tenant.id, 5):
        db_session.commit()
        # The next transaction picks the ids up again from the session
        assert db_session.info[CONTEXT_KEY] == (tenant.id, 5)
    assert CONTEXT_KEY not in db_session.info


def test_scope_clears_context_when_block_raises(db_session, tenant):
    with pytest.raises(RuntimeError):
        with tenant_scope(db_session, tenant.id, 5):
            raise RuntimeError("boom")
    assert CONTEXT_KEY not in db_session.info


def test_request_leaves_no_context_behind(login, db_session, employee_user):
    response = login(employee_user).get("/api/auth/me")
    assert response.status_code == 200
    assert CONTEXT_KEY not in db_session.info
