"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
The application connects with psycopg2 using DATABASE_URL as-is; alembic
needs a SQLAlchemy URL, so libpq key=value DSNs are converted here.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_SCHEME = "postgresql+psycopg2://"


def _read_quoted(dsn: str, i: int) -> tuple[str, int]:
    """Read a single-quoted libpq value starting after the opening quote."""
    parts: list[str] = []
    while i < len(dsn):
        ch = dsn[i]
        if ch == "\\" and i + 1 < len(dsn):
            parts.append(dsn[i + 1])
            i += 2
            continue
        i += 1
        if ch == "'":
            break
        parts.append(ch)
    return "".join(parts), i


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse libpq key=value DSN, handling single-quoted values."""
    tokens: dict[str, str] = {}
    i = 0
    while i < len(dsn):
        if dsn[i] == " ":
            i += 1
            continue
        eq = dsn.find("=", i)
        if eq < 0:
            break
        key = dsn[i:eq].strip()
        i = eq + 1
        if i < len(dsn) and dsn[i] == "'":
            value, i = _read_quoted(dsn, i + 1)
        else:
            end = dsn.find(" ", i)
            end = len(dsn) if end < 0 else end
            value, i = dsn[i:end], end
        tokens[key] = value
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and is passed as a
    query parameter; anything else becomes host:port.
    """
    tokens = _parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    user = quote_plus(tokens.get("user", ""))
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    port = tokens.get("port", "5432")
    credentials = f"{user}:{quote_plus(password)}"

    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}{credentials}@{host}:{port}/{dbname}"


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)

    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            url = _DRIVER_SCHEME + url[len(prefix):]
            break

    db_password = os.environ.get("DB_PASSWORD", "")
    parsed = urlparse(url)
    if db_password and not parsed.password:
        netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url = urlunparse(parsed._replace(netloc=netloc))
    return url
