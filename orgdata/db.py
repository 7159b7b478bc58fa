"""Engine construction for the relational store."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from orgdata.config import Settings


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for `database_url`.

    An in-memory SQLite database is shared across threads through a single
    static connection so that every caller sees the same data.

    Foreign keys are declared in the schema but SQLite does not enforce them
    unless asked to. Edges routinely point at organisations written in a later
    batch, or at reference-only organisations that are never written, so
    enforcement stays off.
    """
    kwargs: dict = {"echo": echo, "future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(database_url, **kwargs)


def engine_from_settings(settings: Settings) -> Engine:
    return make_engine(settings.database_url, echo=settings.database_echo)
