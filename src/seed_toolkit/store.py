"""DuckDB-backed metric store shared by the seed pipeline and the verifier.

Every query is scoped by tenant. Reads additionally carry the provenance
filter described by :class:`MetricFilter`; writes only ever touch rows the
toolkit tagged as mock data.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import duckdb
import polars as pl

from seed_toolkit.utils.duck import open_db, safe_query
from seed_toolkit.utils.hashing import sha256_hex

MOCK_SOURCE_PREFIX = "toolkit:"
MOCK_CAMPAIGN_PREFIX = "unified-"

METRIC_COLUMNS: Tuple[str, ...] = (
    "tenant_id",
    "campaign_id",
    "platform",
    "date",
    "impressions",
    "clicks",
    "spend",
    "conversions",
    "revenue",
    "ctr",
    "cpc",
    "cvr",
    "roas",
    "is_mock_data",
    "source",
)

AGGREGATE_FIELDS: Tuple[str, ...] = (
    "impressions",
    "clicks",
    "spend",
    "conversions",
    "revenue",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS campaigns (
        campaign_id VARCHAR PRIMARY KEY,
        tenant_id VARCHAR NOT NULL,
        platform VARCHAR NOT NULL,
        external_id VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        is_mock_data BOOLEAN NOT NULL,
        source VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS metrics (
        tenant_id VARCHAR NOT NULL,
        campaign_id VARCHAR NOT NULL,
        platform VARCHAR NOT NULL,
        date TIMESTAMP NOT NULL,
        impressions BIGINT NOT NULL,
        clicks BIGINT NOT NULL,
        spend DOUBLE NOT NULL,
        conversions BIGINT NOT NULL,
        revenue DOUBLE NOT NULL,
        ctr DOUBLE,
        cpc DOUBLE,
        cvr DOUBLE,
        roas DOUBLE,
        is_mock_data BOOLEAN NOT NULL,
        source VARCHAR
    )
    """,
)


@dataclass(frozen=True)
class MetricFilter:
    """Read filter for metric rows.

    ``date_gte``/``date_lte`` bound an inclusive window. With
    ``outside_window`` set the window is negated so only rows falling outside
    it match.
    """

    tenant_id: str
    is_mock_data: bool = True
    source_prefix: Optional[str] = MOCK_SOURCE_PREFIX
    source: Optional[str] = None
    platforms: Tuple[str, ...] = ()
    date_gte: Optional[datetime] = None
    date_lte: Optional[datetime] = None
    outside_window: bool = False

    def where(self) -> Tuple[str, List[Any]]:
        clauses = ["tenant_id = ?", "is_mock_data = ?"]
        params: List[Any] = [self.tenant_id, self.is_mock_data]
        if self.source_prefix is not None:
            clauses.append("starts_with(source, ?)")
            params.append(self.source_prefix)
        if self.source is not None:
            clauses.append("source = ?")
            params.append(self.source)
        if self.platforms:
            marks = ", ".join("?" for _ in self.platforms)
            clauses.append(f"platform IN ({marks})")
            params.extend(self.platforms)
        window: List[str] = []
        if self.date_gte is not None:
            window.append("date >= ?")
            params.append(_naive_utc(self.date_gte))
        if self.date_lte is not None:
            window.append("date <= ?")
            params.append(_naive_utc(self.date_lte))
        if window:
            joined = " AND ".join(window)
            clauses.append(f"NOT ({joined})" if self.outside_window else f"({joined})")
        return " AND ".join(clauses), params


@dataclass(frozen=True)
class CampaignRecord:
    tenant_id: str
    platform: str
    external_id: str
    name: str
    source: str
    is_mock_data: bool = True

    @property
    def campaign_id(self) -> str:
        return campaign_id_for(self.tenant_id, self.external_id)


def campaign_id_for(tenant_id: str, external_id: str) -> str:
    return "cmp_" + sha256_hex(f"{tenant_id}:{external_id}")[:16]


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MetricStore:
    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn
        for statement in _SCHEMA:
            self.conn.execute(statement)

    @classmethod
    def open(cls, db_path_or_none: Optional[Path]) -> "MetricStore":
        return cls(open_db(db_path_or_none))

    def close(self) -> None:
        self.conn.close()

    # reads

    def count_metrics(self, metric_filter: MetricFilter) -> int:
        where, params = metric_filter.where()
        frame = safe_query(
            self.conn, f"SELECT COUNT(*) AS n FROM metrics WHERE {where}", params
        )
        return int(frame["n"][0]) if frame.height else 0

    def group_metrics(self, metric_filter: MetricFilter) -> List[Dict[str, Any]]:
        where, params = metric_filter.where()
        sums = ", ".join(f"SUM({field}) AS {field}" for field in AGGREGATE_FIELDS)
        frame = safe_query(
            self.conn,
            f"SELECT campaign_id, platform, {sums} FROM metrics WHERE {where} "
            "GROUP BY campaign_id, platform ORDER BY campaign_id, platform",
            params,
        )
        return frame.to_dicts()

    def has_real_data(self, tenant_id: str) -> bool:
        frame = safe_query(
            self.conn,
            "SELECT "
            "(SELECT COUNT(*) FROM metrics WHERE tenant_id = ? AND NOT is_mock_data) "
            "+ (SELECT COUNT(*) FROM campaigns WHERE tenant_id = ? "
            "AND (NOT is_mock_data OR NOT starts_with(external_id, ?))) AS n",
            [tenant_id, tenant_id, MOCK_CAMPAIGN_PREFIX],
        )
        return bool(frame.height and int(frame["n"][0]) > 0)

    def fetch_metrics(self, metric_filter: MetricFilter) -> pl.DataFrame:
        where, params = metric_filter.where()
        columns = ", ".join(METRIC_COLUMNS)
        return safe_query(
            self.conn,
            f"SELECT {columns} FROM metrics WHERE {where} ORDER BY platform, date",
            params,
        )

    # writes

    @contextmanager
    def transaction(self) -> Iterator["MetricStore"]:
        self.conn.begin()
        try:
            yield self
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def delete_mock_metrics(self, tenant_id: str, source: str, platform: str) -> int:
        before = self._count(
            "SELECT COUNT(*) FROM metrics WHERE tenant_id = ? AND is_mock_data "
            "AND source = ? AND platform = ?",
            [tenant_id, source, platform],
        )
        self.conn.execute(
            "DELETE FROM metrics WHERE tenant_id = ? AND is_mock_data "
            "AND source = ? AND platform = ?",
            [tenant_id, source, platform],
        )
        return before

    def delete_campaign(self, campaign_id: str) -> None:
        self.conn.execute(
            "DELETE FROM campaigns WHERE campaign_id = ? AND is_mock_data",
            [campaign_id],
        )

    def create_campaign(self, campaign: CampaignRecord) -> str:
        self.conn.execute(
            "INSERT INTO campaigns (campaign_id, tenant_id, platform, external_id, "
            "name, is_mock_data, source) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                campaign.campaign_id,
                campaign.tenant_id,
                campaign.platform,
                campaign.external_id,
                campaign.name,
                campaign.is_mock_data,
                campaign.source,
            ],
        )
        return campaign.campaign_id

    def create_metrics(self, rows: pl.DataFrame) -> int:
        if rows.height == 0:
            return 0
        ordered = rows.select(list(METRIC_COLUMNS))
        placeholders = ", ".join("?" for _ in METRIC_COLUMNS)
        self.conn.executemany(
            f"INSERT INTO metrics ({', '.join(METRIC_COLUMNS)}) VALUES ({placeholders})",
            [list(row) for row in ordered.rows()],
        )
        return ordered.height

    def _count(self, sql: str, params: Sequence[Any]) -> int:
        row = self.conn.execute(sql, list(params)).fetchone()
        return int(row[0]) if row else 0


__all__ = [
    "AGGREGATE_FIELDS",
    "CampaignRecord",
    "METRIC_COLUMNS",
    "MOCK_CAMPAIGN_PREFIX",
    "MOCK_SOURCE_PREFIX",
    "MetricFilter",
    "MetricStore",
    "campaign_id_for",
]
