from aibase.tools.runtime.duckdb import duckdb

exports = {"duckdb": duckdb}
