"""
Engine-or-connection handling for the PostgreSQL stores.

A store built on an ``AsyncEngine`` runs each operation on a connection of
its own. A store built on an ``AsyncConnection`` belongs to a session and
joins the transaction the session opened.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection for one store operation.

    Args:
        conn: Engine or session connection the store was built with
        transactional: For engines, whether the operation commits as its own
            transaction (``begin``) or only reads (``connect``). Ignored for
            connections, whose transaction belongs to the session.

    Example:
        >>> async with execute_with_connection(self._conn, transactional=False) as conn:
        ...     row = (await conn.execute(query, params)).fetchone()
    """
    if not isinstance(conn, AsyncEngine):
        yield conn
        return

    scope = conn.begin() if transactional else conn.connect()
    async with scope as connection:
        yield connection
