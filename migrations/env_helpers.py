"""Database URL resolution for Alembic migrations.

Kept apart from env.py so it can be tested without an alembic context.
DATABASE_URL may be a URL (postgres://, postgresql://) or a libpq
key=value DSN; either way SQLAlchemy gets a postgresql+psycopg2 URL.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

DRIVER = "postgresql+psycopg2"


def dsn_to_url(dsn: str) -> URL:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" is a Unix socket directory and is passed as
    the ``host`` query parameter.

    Raises:
        psycopg2.ProgrammingError: If the DSN cannot be parsed.
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD") or None
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return URL.create(
            DRIVER,
            username=params.get("user"),
            password=password,
            database=params.get("dbname"),
            query={"host": host},
        )
    return URL.create(
        DRIVER,
        username=params.get("user"),
        password=password,
        host=host,
        port=int(params.get("port", 5432)),
        database=params.get("dbname"),
    )


def database_url() -> URL:
    """Resolve the migration URL from DATABASE_URL (and DB_PASSWORD).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in raw:
        return dsn_to_url(raw)

    url = make_url(raw.replace("postgres://", "postgresql://", 1))
    url = url.set(drivername=DRIVER)
    if not url.password and os.environ.get("DB_PASSWORD"):
        url = url.set(password=os.environ["DB_PASSWORD"])
    return url
