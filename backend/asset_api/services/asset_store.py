"""
SQL implementation of the asset StoragePort.

Runs the compiled WHERE clause over the asset join graph with SQLAlchemy
text() statements. Set-valued parameters are bound as expanding IN lists.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from asset_explorer.data_models import SortSpec, WhereClause
from asset_explorer.query_executor import StoragePort

logger = logging.getLogger(__name__)

COMMENT_SEPARATOR = " | "

ASSET_COLUMNS = """
    a.id,
    a.filename,
    a.filesize,
    a.processed,
    a.created_at,
    a.media_info,
    a.s3_url,
    a.account_id AS trial_id,
    acc.trial_name,
    acc.company_name,
    tc.id AS container_id,
    tc.name AS container_name,
    tc.type AS container_type,
    tc.country_code,
    uploader.email AS uploader_email,
    uploader.first_name AS uploader_first_name,
    uploader.last_name AS uploader_last_name,
    sp.id AS study_procedure_id,
    sp.date AS study_procedure_date,
    spd.display_name AS study_procedure,
    se.display_name AS study_event,
    sa.display_name AS study_arm,
    ss.number AS subject_number,
    evaluator.first_name AS evaluator_first_name,
    evaluator.last_name AS evaluator_last_name,
    ar.reviewed,
    ar.review_date,
    reviewer.first_name AS reviewer_first_name,
    reviewer.last_name AS reviewer_last_name
"""

# At most one review per asset: the latest live one
LATEST_REVIEW_JOIN = """
LEFT JOIN asset_reviews ar ON ar.id = (
    SELECT MAX(r.id) FROM asset_reviews r
    WHERE r.asset_id = a.id AND r.deleted_at IS NULL
)
"""

# Aliases referenced by filter predicates and sort columns
ASSET_JOINS = f"""
FROM assets a
LEFT JOIN accounts acc ON a.account_id = acc.id
LEFT JOIN trial_containers tc ON a.trial_container_id = tc.id
LEFT JOIN users uploader ON a.uploader_id = uploader.id
LEFT JOIN study_procedures sp ON a.study_procedure_id = sp.id
LEFT JOIN study_procedure_definitions spd ON sp.study_procedure_definition_id = spd.id
LEFT JOIN study_events se ON sp.study_event_id = se.id
LEFT JOIN study_subjects ss ON se.study_subject_id = ss.id
LEFT JOIN study_arms sa ON ss.study_arm_id = sa.id
LEFT JOIN users evaluator ON sp.evaluator_id = evaluator.id
{LATEST_REVIEW_JOIN.strip()}
LEFT JOIN users reviewer ON ar.user_id = reviewer.id
"""


def _bind_where(sql: str, where: WhereClause, **extra: Any):
    binds = [bindparam(param.name, param.value, expanding=param.expanding) for param in where.parameters]
    binds.extend(bindparam(name, value) for name, value in extra.items())
    statement = text(sql)
    return statement.bindparams(*binds) if binds else statement


class SqlAssetStore(StoragePort):
    """
    Asset store over a SQLAlchemy session.

    Works on PostgreSQL and SQLite: comments are aggregated in Python from
    one extra query per page rather than with a dialect-specific aggregate.
    """

    def __init__(self, db: Session):
        self.db = db

    def count(self, where: WhereClause) -> int:
        sql = f"SELECT COUNT(DISTINCT a.id) AS total {ASSET_JOINS} {where.to_sql()}"
        total = self.db.execute(_bind_where(sql, where)).scalar()
        return int(total or 0)

    def fetch_page(self, where: WhereClause, sort: SortSpec, limit: int, offset: int) -> List[Dict[str, Any]]:
        sql = (
            f"SELECT {ASSET_COLUMNS} {ASSET_JOINS} {where.to_sql()} {sort.to_sql()} "
            f"LIMIT :page_limit OFFSET :page_offset"
        )
        result = self.db.execute(_bind_where(sql, where, page_limit=limit, page_offset=offset))
        rows = [dict(row) for row in result.mappings().all()]
        self._attach_comments(rows)
        logger.debug(f"Fetched {len(rows)} asset rows (limit={limit}, offset={offset})")
        return rows

    def _attach_comments(self, rows: List[Dict[str, Any]]) -> None:
        asset_ids = list(dict.fromkeys(row["id"] for row in rows))
        if not asset_ids:
            return
        statement = text(
            "SELECT c.asset_id, c.comment FROM comments c "
            "WHERE c.asset_id IN :asset_ids AND c.deleted_at IS NULL "
            "ORDER BY c.created_at ASC, c.id ASC"
        ).bindparams(bindparam("asset_ids", asset_ids, expanding=True))

        grouped: Dict[Any, List[str]] = {}
        for asset_id, comment in self.db.execute(statement).all():
            grouped.setdefault(asset_id, []).append(comment)
        for row in rows:
            comments = grouped.get(row["id"])
            row["comments"] = COMMENT_SEPARATOR.join(comments) if comments else None

    # =========================================================================
    # Single asset
    # =========================================================================

    def fetch_asset(self, asset_id: int) -> Optional[Dict[str, Any]]:
        """Raw row for one live asset, or None."""
        statement = text(
            f"SELECT {ASSET_COLUMNS} {ASSET_JOINS} "
            f"WHERE a.id = :asset_id AND a.soft_deleted_at IS NULL"
        ).bindparams(asset_id=asset_id)
        row = self.db.execute(statement).mappings().first()
        if row is None:
            return None
        rows = [dict(row)]
        self._attach_comments(rows)
        return rows[0]

    def fetch_comments(self, asset_id: int) -> List[Mapping[str, Any]]:
        statement = text(
            "SELECT c.id, c.comment, c.created_at, u.first_name, u.last_name, u.email "
            "FROM comments c "
            "LEFT JOIN users u ON c.author_id = u.id "
            "WHERE c.asset_id = :asset_id AND c.deleted_at IS NULL "
            "ORDER BY c.created_at ASC, c.id ASC"
        ).bindparams(asset_id=asset_id)
        return self.db.execute(statement).mappings().all()
