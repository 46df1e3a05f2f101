"""
Hierarchy listings: sites and the subjects, events, procedures and assets
below them.

Every nested listing first checks that each id in the path belongs to the
parent it is claimed under; a broken link raises HierarchyPathNotFound
instead of leaking rows from another branch.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.orm import Session

from asset_explorer.country_codes import get_country_name
from asset_explorer.errors import HierarchyPathNotFound
from asset_explorer.filter_compiler import escape_like
from asset_explorer.formatting import (
    format_date,
    format_datetime,
    format_file_size,
    full_name,
    media_duration,
)
from asset_explorer.hierarchy_models import AssetNode, EventNode, ProcedureNode, SiteNode, SubjectNode

from asset_api.services.asset_store import LATEST_REVIEW_JOIN

logger = logging.getLogger(__name__)

# Sort allow-lists: request field -> column
SITE_SORT_COLUMNS = {"id": "tc.id", "name": "tc.name", "country_code": "tc.country_code", "created_at": "tc.created_at"}
SUBJECT_SORT_COLUMNS = {"id": "ss.id", "number": "ss.number", "created_at": "ss.created_at"}
EVENT_SORT_COLUMNS = {"id": "se.id", "date": "se.date", "status": "se.status", "created_at": "se.created_at"}
PROCEDURE_SORT_COLUMNS = {"id": "sp.id", "date": "sp.date", "status": "sp.status", "created_at": "sp.created_at"}
ASSET_SORT_COLUMNS = {"id": "a.id", "filename": "a.filename", "filesize": "a.filesize", "created_at": "a.created_at"}

# (default sort, default order) per level
SITE_SORT_DEFAULT = ("name", "asc")
SUBJECT_SORT_DEFAULT = ("number", "asc")
EVENT_SORT_DEFAULT = ("date", "desc")
PROCEDURE_SORT_DEFAULT = ("date", "desc")
ASSET_SORT_DEFAULT = ("created_at", "desc")


def _order_by(columns: Dict[str, str], sort: str, order: str, tiebreak: str) -> str:
    direction = "ASC" if order == "asc" else "DESC"
    return f"ORDER BY {columns[sort]} {direction} NULLS LAST, {tiebreak} {direction}"


def _as_bool(value: Any) -> Optional[bool]:
    return None if value is None else bool(value)


class HierarchyService:
    """Read-only queries backing the /sites endpoints."""

    def __init__(self, db: Session):
        self.db = db

    def _exists(self, sql: str, **params: Any) -> bool:
        return self.db.execute(text(sql), params).first() is not None

    def validate_path(
        self,
        site_id: int,
        subject_id: Optional[int] = None,
        event_id: Optional[int] = None,
        procedure_id: Optional[int] = None,
    ) -> None:
        """
        Check parent/child links from the site down to the deepest given id.

        Raises:
            HierarchyPathNotFound: On the first id that does not belong to
                its parent.
        """
        if not self._exists(
            "SELECT id FROM trial_containers WHERE id = :site_id AND type = 'Site' AND deleted_at IS NULL",
            site_id=site_id,
        ):
            raise HierarchyPathNotFound("Site not found", level="site")
        if subject_id is None:
            return

        if not self._exists(
            "SELECT id FROM study_subjects WHERE id = :subject_id AND site_id = :site_id",
            subject_id=subject_id, site_id=site_id,
        ):
            raise HierarchyPathNotFound("Subject not found at this site", level="subject")
        if event_id is None:
            return

        if not self._exists(
            "SELECT id FROM study_events "
            "WHERE id = :event_id AND study_subject_id = :subject_id AND deleted_at IS NULL",
            event_id=event_id, subject_id=subject_id,
        ):
            raise HierarchyPathNotFound("Event not found for this subject", level="event")
        if procedure_id is None:
            return

        if not self._exists(
            "SELECT id FROM study_procedures "
            "WHERE id = :procedure_id AND study_event_id = :event_id AND deleted_at IS NULL",
            procedure_id=procedure_id, event_id=event_id,
        ):
            raise HierarchyPathNotFound("Procedure not found for this event", level="procedure")

    # =========================================================================
    # Sites
    # =========================================================================

    def list_sites(
        self,
        limit: int,
        offset: int,
        sort: str,
        order: str,
        trial_id: Optional[int] = None,
        country_code: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[SiteNode], int]:
        filters = ["tc.type = 'Site'", "tc.deleted_at IS NULL"]
        params: Dict[str, Any] = {}
        if trial_id is not None:
            filters.append("tc.account_id = :trial_id")
            params["trial_id"] = trial_id
        if country_code:
            filters.append("tc.country_code = :country_code")
            params["country_code"] = country_code.upper()
        if search and search.strip():
            filters.append("lower(tc.name) LIKE :search ESCAPE '\\'")
            params["search"] = f"%{escape_like(search.strip().lower())}%"
        where = "WHERE " + " AND ".join(filters)

        total = self.db.execute(text(f"SELECT COUNT(*) FROM trial_containers tc {where}"), params).scalar()
        rows = self.db.execute(
            text(f"""
                SELECT
                    tc.id, tc.name, tc.identifier, tc.country_code,
                    tc.account_id AS trial_id,
                    acc.trial_name, acc.company_name,
                    (SELECT COUNT(*) FROM assets
                     WHERE trial_container_id = tc.id AND soft_deleted_at IS NULL) AS asset_count,
                    (SELECT COUNT(*) FROM study_subjects WHERE site_id = tc.id) AS subject_count
                FROM trial_containers tc
                LEFT JOIN accounts acc ON tc.account_id = acc.id
                {where}
                {_order_by(SITE_SORT_COLUMNS, sort, order, "tc.id")}
                LIMIT :limit OFFSET :offset
            """),
            {**params, "limit": limit, "offset": offset},
        ).mappings().all()

        nodes = [
            SiteNode(
                id=row["id"],
                name=row["name"] or "",
                identifier=row["identifier"],
                country=get_country_name(row["country_code"]),
                country_code=row["country_code"],
                trial_id=row["trial_id"],
                trial_name=row["trial_name"] or row["company_name"],
                subject_count=int(row["subject_count"] or 0),
                asset_count=int(row["asset_count"] or 0),
            )
            for row in rows
        ]
        return nodes, int(total or 0)

    # =========================================================================
    # Nested levels
    # =========================================================================

    def list_subjects(self, site_id: int, limit: int, offset: int, sort: str, order: str) -> Tuple[List[SubjectNode], int]:
        self.validate_path(site_id)
        total = self.db.execute(
            text("SELECT COUNT(*) FROM study_subjects ss WHERE ss.site_id = :site_id"),
            {"site_id": site_id},
        ).scalar()
        rows = self.db.execute(
            text(f"""
                SELECT
                    ss.id, ss.number, ss.active, ss.created_at,
                    sa.id AS arm_id, sa.display_name AS arm_name,
                    COUNT(DISTINCT se.id) AS event_count,
                    COUNT(DISTINCT sp.id) AS procedure_count
                FROM study_subjects ss
                LEFT JOIN study_arms sa ON ss.study_arm_id = sa.id
                LEFT JOIN study_events se ON se.study_subject_id = ss.id AND se.deleted_at IS NULL
                LEFT JOIN study_procedures sp ON sp.study_event_id = se.id AND sp.deleted_at IS NULL
                WHERE ss.site_id = :site_id
                GROUP BY ss.id, ss.number, ss.active, ss.created_at, sa.id, sa.display_name
                {_order_by(SUBJECT_SORT_COLUMNS, sort, order, "ss.id")}
                LIMIT :limit OFFSET :offset
            """),
            {"site_id": site_id, "limit": limit, "offset": offset},
        ).mappings().all()

        nodes = [
            SubjectNode(
                id=row["id"],
                number=row["number"] or "",
                active=_as_bool(row["active"]),
                arm_id=row["arm_id"],
                arm_name=row["arm_name"],
                created_at=format_datetime(row["created_at"]),
                event_count=int(row["event_count"] or 0),
                procedure_count=int(row["procedure_count"] or 0),
            )
            for row in rows
        ]
        return nodes, int(total or 0)

    def list_events(
        self, site_id: int, subject_id: int, limit: int, offset: int, sort: str, order: str
    ) -> Tuple[List[EventNode], int]:
        self.validate_path(site_id, subject_id)
        total = self.db.execute(
            text("SELECT COUNT(*) FROM study_events se WHERE se.study_subject_id = :subject_id AND se.deleted_at IS NULL"),
            {"subject_id": subject_id},
        ).scalar()
        rows = self.db.execute(
            text(f"""
                SELECT
                    se.id, se.identifier, se.display_name AS name, se.date, se.status,
                    sed.display_name AS definition_name,
                    COUNT(DISTINCT sp.id) AS procedure_count,
                    COUNT(DISTINCT a.id) AS asset_count
                FROM study_events se
                LEFT JOIN study_event_definitions sed ON se.study_event_definition_id = sed.id
                LEFT JOIN study_procedures sp ON sp.study_event_id = se.id AND sp.deleted_at IS NULL
                LEFT JOIN assets a ON a.study_procedure_id = sp.id AND a.soft_deleted_at IS NULL
                WHERE se.study_subject_id = :subject_id AND se.deleted_at IS NULL
                GROUP BY se.id, se.identifier, se.display_name, se.date, se.status, se.created_at, sed.display_name
                {_order_by(EVENT_SORT_COLUMNS, sort, order, "se.id")}
                LIMIT :limit OFFSET :offset
            """),
            {"subject_id": subject_id, "limit": limit, "offset": offset},
        ).mappings().all()

        nodes = [
            EventNode(
                id=row["id"],
                identifier=row["identifier"],
                name=row["name"] or row["definition_name"],
                date=format_date(row["date"]),
                status=row["status"],
                procedure_count=int(row["procedure_count"] or 0),
                asset_count=int(row["asset_count"] or 0),
            )
            for row in rows
        ]
        return nodes, int(total or 0)

    def list_procedures(
        self, site_id: int, subject_id: int, event_id: int, limit: int, offset: int, sort: str, order: str
    ) -> Tuple[List[ProcedureNode], int]:
        self.validate_path(site_id, subject_id, event_id)
        total = self.db.execute(
            text("SELECT COUNT(*) FROM study_procedures sp WHERE sp.study_event_id = :event_id AND sp.deleted_at IS NULL"),
            {"event_id": event_id},
        ).scalar()
        rows = self.db.execute(
            text(f"""
                SELECT
                    sp.id, sp.identifier, sp.display_name AS name, sp.date, sp.status, sp.locked,
                    spd.display_name AS definition_name,
                    u.first_name AS evaluator_first_name,
                    u.last_name AS evaluator_last_name,
                    COUNT(DISTINCT a.id) AS asset_count
                FROM study_procedures sp
                LEFT JOIN study_procedure_definitions spd ON sp.study_procedure_definition_id = spd.id
                LEFT JOIN users u ON sp.evaluator_id = u.id
                LEFT JOIN assets a ON a.study_procedure_id = sp.id AND a.soft_deleted_at IS NULL
                WHERE sp.study_event_id = :event_id AND sp.deleted_at IS NULL
                GROUP BY sp.id, sp.identifier, sp.display_name, sp.date, sp.status, sp.locked, sp.created_at,
                         spd.display_name, u.first_name, u.last_name
                {_order_by(PROCEDURE_SORT_COLUMNS, sort, order, "sp.id")}
                LIMIT :limit OFFSET :offset
            """),
            {"event_id": event_id, "limit": limit, "offset": offset},
        ).mappings().all()

        nodes = [
            ProcedureNode(
                id=row["id"],
                identifier=row["identifier"],
                name=row["name"] or row["definition_name"],
                date=format_date(row["date"]),
                status=row["status"],
                locked=_as_bool(row["locked"]),
                evaluator=full_name(row["evaluator_first_name"], row["evaluator_last_name"]),
                asset_count=int(row["asset_count"] or 0),
            )
            for row in rows
        ]
        return nodes, int(total or 0)

    def list_assets(
        self,
        site_id: int,
        subject_id: int,
        event_id: int,
        procedure_id: int,
        limit: int,
        offset: int,
        sort: str,
        order: str,
    ) -> Tuple[List[AssetNode], int]:
        self.validate_path(site_id, subject_id, event_id, procedure_id)
        total = self.db.execute(
            text("SELECT COUNT(*) FROM assets a WHERE a.study_procedure_id = :procedure_id AND a.soft_deleted_at IS NULL"),
            {"procedure_id": procedure_id},
        ).scalar()
        rows = self.db.execute(
            text(f"""
                SELECT
                    a.id, a.filename, a.filesize, a.processed, a.created_at, a.s3_url, a.media_info,
                    ar.reviewed, ar.review_date,
                    reviewer.first_name AS reviewer_first_name,
                    reviewer.last_name AS reviewer_last_name
                FROM assets a
                {LATEST_REVIEW_JOIN.strip()}
                LEFT JOIN users reviewer ON ar.user_id = reviewer.id
                WHERE a.study_procedure_id = :procedure_id AND a.soft_deleted_at IS NULL
                {_order_by(ASSET_SORT_COLUMNS, sort, order, "a.id")}
                LIMIT :limit OFFSET :offset
            """),
            {"procedure_id": procedure_id, "limit": limit, "offset": offset},
        ).mappings().all()

        nodes = []
        for row in rows:
            filesize = int(row["filesize"] or 0)
            nodes.append(AssetNode(
                id=row["id"],
                filename=row["filename"] or "",
                filesize=filesize,
                filesize_formatted=format_file_size(filesize),
                duration=media_duration(row["media_info"]),
                url=row["s3_url"],
                processed=bool(row["processed"]),
                created_at=format_datetime(row["created_at"]),
                reviewed=bool(row["reviewed"]),
                review_date=format_date(row["review_date"]),
                reviewer=full_name(row["reviewer_first_name"], row["reviewer_last_name"]),
            ))
        return nodes, int(total or 0)
