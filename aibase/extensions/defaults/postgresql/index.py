"""PostgreSQL queries. Results are also shown in the inspection panel."""

from aibase.tools.runtime import postgresql as _postgresql


async def postgresql(query, connection_url, format="json", timeout=30000):
    """Run ``query`` and return ``{data, row_count, columns, execution_time}``.

    Never hardcode ``connection_url``; read it with
    ``memory.read("database", "postgresql_url")``.
    """
    return await _postgresql.postgresql(query, connection_url, format=format, timeout=timeout)
