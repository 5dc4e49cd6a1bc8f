from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import duckdb
import polars as pl


def open_db(db_path_or_none: Optional[Path]) -> duckdb.DuckDBPyConnection:
    if db_path_or_none is None:
        return duckdb.connect(database=":memory:")
    Path(db_path_or_none).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(database=str(db_path_or_none))


def safe_query(
    conn: duckdb.DuckDBPyConnection,
    sql: str,
    params: Optional[Iterable] = None,
) -> pl.DataFrame:
    _guard_sql(sql)
    result = conn.execute(sql, list(params or ()))
    records = result.fetchall()
    columns = [desc[0] for desc in result.description] if result.description else None
    if not records:
        return pl.DataFrame(schema=columns or [])
    if columns is None:
        return pl.DataFrame(records, orient="row")
    return pl.DataFrame(records, schema=columns, orient="row")


def _guard_sql(sql: str) -> None:
    lowered = sql.lower()
    if ";" in sql:
        raise ValueError("Semicolons are not permitted in safe_query.")
    forbidden = ("copy", "attach", "install")
    if any(keyword in lowered for keyword in forbidden):
        raise ValueError("Potentially unsafe SQL detected.")


__all__ = ["open_db", "safe_query"]
