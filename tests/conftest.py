import pytest
import sqlalchemy as sa
from pydantic import Field

from kiln import (
    ModelRegistry,
    belongs_to,
    belongs_to_many,
    connect,
    has_many,
    has_one,
    integer,
    string,
)


@pytest.fixture
def db_url(tmp_path):
    """A fresh SQLite database file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'kiln_test.db'}"


@pytest.fixture
def registry():
    """Users, their posts and profiles, and tags linked to posts."""
    registry = ModelRegistry()
    registry.define(
        "User",
        {
            "id": integer().not_null().primary(),
            "name": string().not_null(),
            "email": string().not_null().unique(),
        },
        validators={"name": Field(min_length=2)},
        relations={"posts": has_many("Post"), "profile": has_one("Profile")},
    )
    registry.define(
        "Post",
        {
            "id": integer().not_null().primary(),
            "title": string().not_null(),
            "user_id": integer().not_null().index(),
        },
        relations={
            "author": belongs_to("User", foreign_key="user_id"),
            "tags": belongs_to_many("Tag"),
        },
    )
    registry.define(
        "Profile",
        {
            "id": integer().not_null().primary(),
            "user_id": integer().not_null().unique(),
            "bio": string(),
        },
        relations={"user": belongs_to("User")},
    )
    registry.define(
        "Tag",
        {"id": integer().not_null().primary(), "label": string().not_null()},
    )
    return registry


@pytest.fixture
async def engine(db_url, registry):
    """Root engine with every registered table created."""
    engine = await connect(db_url, registry=registry, auto_migrate=True)
    yield engine
    await engine.dispose()


@pytest.fixture
def statements(engine):
    """Record every SQL statement sent to the database."""
    recorded: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        recorded.append(statement)

    sa.event.listen(engine.engine.sync_engine, "before_cursor_execute", _record)
    yield recorded
    sa.event.remove(engine.engine.sync_engine, "before_cursor_execute", _record)


@pytest.fixture
def selects(statements):
    """Return a callable listing the SELECT statements recorded so far."""

    def _selects() -> list[str]:
        return [s for s in statements if s.lstrip().upper().startswith("SELECT")]

    return _selects
