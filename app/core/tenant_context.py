"""
Row-level isolation context.

On PostgreSQL the current tenant and user are pushed into the connection as
``app.current_tenant_id`` / ``app.current_user_id`` so that RLS policies can
filter rows declaratively. The ids live in ``Session.info`` and are applied
with ``set_config(..., true)`` at the start of every transaction the session
begins, so they stay on whichever pooled connection that transaction uses and
vanish with it at commit or rollback.

Other dialects (SQLite in dev/tests) have no such mechanism; there only the
``Session.info`` bookkeeping happens and isolation relies on the explicit
``tenant_id`` filters in every query.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

CONTEXT_KEY = "tenant_context"


def _apply(connection: Connection, tenant_id: Optional[int], user_id: Optional[int]) -> None:
    connection.execute(
        text("SELECT set_config('app.current_tenant_id', :tenant_id, true)"),
        {"tenant_id": str(tenant_id) if tenant_id is not None else ""},
    )
    connection.execute(
        text("SELECT set_config('app.current_user_id', :user_id, true)"),
        {"user_id": str(user_id) if user_id is not None else ""},
    )


@event.listens_for(Session, "after_begin")
def apply_tenant_context(session: Session, transaction, connection: Connection) -> None:
    context = session.info.get(CONTEXT_KEY)
    if context is None or connection.dialect.name != "postgresql":
        return
    _apply(connection, *context)


def _supports_session_variables(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def set_tenant_context(db: Session, tenant_id: int, user_id: Optional[int] = None) -> None:
    db.info[CONTEXT_KEY] = (tenant_id, user_id)
    # A transaction already under way missed after_begin
    if _supports_session_variables(db) and db.in_transaction():
        _apply(db.connection(), tenant_id, user_id)


def clear_tenant_context(db: Session) -> None:
    db.info.pop(CONTEXT_KEY, None)
    if _supports_session_variables(db) and db.in_transaction():
        _apply(db.connection(), None, None)


@contextmanager
def tenant_scope(db: Session, tenant_id: int, user_id: Optional[int] = None) -> Iterator[Session]:
    """Apply the context for the duration of the block and always clear it afterwards."""
    set_tenant_context(db, tenant_id, user_id)
    try:
        yield db
    finally:
        try:
            clear_tenant_context(db)
        except Exception:
            # A broken connection must not mask the original error
            logger.warning("Failed to clear tenant context", exc_info=True)


@contextmanager
def tenant_transaction(db: Session, tenant_id: int, user_id: Optional[int] = None) -> Iterator[Session]:
    """
    Unit of work under tenant context.

    Commits when the block succeeds and rolls back when it raises. The context
    is (re)applied but left in place; clearing it belongs to the enclosing
    tenant_scope of the request.
    """
    set_tenant_context(db, tenant_id, user_id)
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Transaction rolled back for tenant {tenant_id}", exc_info=True)
        raise
