"""Distributed SQL through a Trino coordinator."""

from aibase.tools.runtime import trino as _trino


async def trino(query, server_url, catalog=None, schema=None, username=None, password=None, format="json", timeout=30000):
    """Run ``query`` and return ``{data, row_count, execution_time, stats}``.

    Read ``server_url`` and credentials with ``memory.read("database", ...)``.
    """
    return await _trino.trino(
        query,
        server_url,
        catalog=catalog,
        schema=schema,
        username=username,
        password=password,
        format=format,
        timeout=timeout,
    )


async def check_connection(server_url, catalog=None, schema=None, username=None, password=None):
    """``{connected, version}`` or ``{connected: False, error}``."""
    return await _trino.check_connection(
        server_url, catalog=catalog, schema=schema, username=username, password=password
    )
