from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, Row

from .models import LeadRecord

_TABLE_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?")


class LeadDataRepository:
    """
    Interface for loading lead/client records.

    Implementations return every raw record; date, category and numeric
    filtering all happen in Python so the same rules apply to inline payloads
    and database rows.
    """

    def load(self) -> Sequence[LeadRecord]:
        raise NotImplementedError


class SQLLeadRepository(LeadDataRepository):
    """
    Load records from a flat ``leads`` table.

    Expected columns mirror :class:`LeadRecord`; the numeric columns
    (``ltv``, ``visits``, ``visits_post_trial``, ``conversion_span``) may be
    NULL and are defaulted to 0 here, at ingestion.
    """

    def __init__(self, engine: Engine, table_name: str = "leads"):
        if not _TABLE_NAME.fullmatch(table_name):
            raise ValueError(f"Invalid table name: {table_name!r}")
        self.engine = engine
        self.table_name = table_name

    def _quoted_table(self) -> str:
        preparer = self.engine.dialect.identifier_preparer
        return ".".join(preparer.quote(part) for part in self.table_name.split("."))

    def load(self) -> Sequence[LeadRecord]:
        query = text(
            f"""
            SELECT id, created_at, source, stage, status, channel, location, associate,
                   trial_status, conversion_status, retention_status, is_new,
                   first_visit_type, home_location, trainer, payment_method, remarks,
                   COALESCE(ltv, 0) AS ltv,
                   COALESCE(visits, 0) AS visits,
                   COALESCE(visits_post_trial, 0) AS visits_post_trial,
                   COALESCE(conversion_span, 0) AS conversion_span
            FROM {self._quoted_table()}
            ORDER BY id ASC
            """
        )
        with self.engine.connect() as connection:
            rows = connection.execute(query).fetchall()
        return tuple(self._row_to_record(row) for row in rows)

    @staticmethod
    def _row_to_record(row: Row) -> LeadRecord:
        payload = dict(row._mapping)
        created_at = payload.get("created_at")
        if created_at is not None and not isinstance(created_at, str):
            payload["created_at"] = created_at.isoformat()
        return LeadRecord.from_mapping(payload)


@dataclass(frozen=True)
class RepositoryConfig:
    database_url: Optional[str] = None
    table_name: str = "leads"

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        return cls(
            database_url=os.getenv("STUDIO_DASHBOARD_DATABASE_URL"),
            table_name=os.getenv("STUDIO_DASHBOARD_TABLE", "leads"),
        )


def build_repository_from_env(config: Optional[RepositoryConfig] = None) -> Optional[LeadDataRepository]:
    cfg = config or RepositoryConfig.from_env()
    if cfg.database_url:
        engine = create_engine(cfg.database_url)
        return SQLLeadRepository(engine, table_name=cfg.table_name)
    return None
