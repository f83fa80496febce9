from aibase.tools.runtime.clickhouse import clickhouse

__all__ = ["clickhouse"]
