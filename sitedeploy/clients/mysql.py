"""Shared MySQL database client on an async SQLAlchemy engine (aiomysql driver)."""

from __future__ import annotations

import logging
import re

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sitedeploy.exceptions import ClientError, TransientClientError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"[A-Za-z0-9_-]{1,64}")
_CHARSET = re.compile(r"[A-Za-z0-9_]{1,64}")
_USER = re.compile(r"[A-Za-z0-9_.-]{1,32}")

# MySQL client error codes for "server not reachable yet".
_TRANSIENT_CODES = {2002, 2003, 2006, 2013}


def _quote_identifier(name: str) -> str:
    if not _IDENTIFIER.fullmatch(name):
        raise ClientError(f"Invalid database identifier: {name!r}")
    return "`" + name.replace("`", "``") + "`"


def _error_code(exc: DBAPIError) -> int | None:
    args = getattr(exc.orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _translate(exc: SQLAlchemyError, action: str) -> ClientError:
    """Map driver errors onto transient vs. permanent client errors."""
    if isinstance(exc, DBAPIError):
        code = _error_code(exc)
        if exc.connection_invalidated or code in _TRANSIENT_CODES:
            return TransientClientError(f"{action}: database not reachable (code {code})")
        return ClientError(f"{action}: {exc.orig}")
    return ClientError(f"{action}: {exc}")


def create_admin_engine(host: str, port: int, user: str, password: str, *, connect_timeout: int = 30) -> AsyncEngine:
    """Create an async engine for administrative statements (no default schema)."""
    url = URL.create(
        "mysql+aiomysql",
        username=user,
        password=password,
        host=host,
        port=port,
    )
    return create_async_engine(
        url,
        pool_size=1,
        max_overflow=0,
        pool_pre_ping=True,
        connect_args={"connect_timeout": connect_timeout},
    )


class MySQLDatabaseClient:
    """Create, grant and verify tenant databases on the shared cluster."""

    def __init__(self, engine: AsyncEngine, host: str) -> None:
        self.engine = engine
        self.host = host

    @classmethod
    def connect(cls, host: str, port: int, user: str, password: str) -> MySQLDatabaseClient:
        return cls(create_admin_engine(host, port, user, password), host)

    async def database_exists(self, name: str) -> bool:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    text("SELECT SCHEMA_NAME FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = :name"),
                    {"name": name},
                )
                return result.scalar() == name
        except SQLAlchemyError as exc:
            raise _translate(exc, f"lookup of {name}") from exc

    async def create_database(self, name: str, charset: str, collation: str) -> None:
        quoted = _quote_identifier(name)
        if not _CHARSET.fullmatch(charset) or not _CHARSET.fullmatch(collation):
            raise ClientError(f"Invalid charset/collation: {charset}/{collation}")
        statement = f"CREATE DATABASE IF NOT EXISTS {quoted} CHARACTER SET {charset} COLLATE {collation}"
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text(statement))
        except SQLAlchemyError as exc:
            raise _translate(exc, f"create database {name}") from exc
        logger.info("Created database %s on %s", name, self.host)

    async def grant_all(self, name: str, user: str) -> None:
        quoted = _quote_identifier(name)
        if not _USER.fullmatch(user):
            raise ClientError(f"Invalid database user: {user!r}")
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text(f"GRANT ALL PRIVILEGES ON {quoted}.* TO '{user}'@'%'"))
                await conn.execute(text("FLUSH PRIVILEGES"))
        except SQLAlchemyError as exc:
            raise _translate(exc, f"grant on {name}") from exc
        logger.debug("Granted %s access to %s", user, name)

    async def close(self) -> None:
        await self.engine.dispose()
