from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


class EngineConfig(BaseModel):
    """
    Connection settings accepted by ``kiln.connect``.

    Attributes:
        url: Async SQLAlchemy database URL, e.g. ``sqlite+aiosqlite:///app.db``.
        echo: Log every SQL statement through SQLAlchemy's logger.
        auto_migrate: Create missing tables for registered models on connect.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    echo: bool = False
    auto_migrate: bool = False

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        try:
            url = make_url(value)
        except ArgumentError as exc:
            raise ValueError(f"Invalid database URL: {value!r}") from exc
        if url.get_backend_name() == "sqlite" and url.get_driver_name() != "aiosqlite":
            raise ValueError("SQLite URLs must use the async driver: sqlite+aiosqlite://")
        return value
