"""
Filter Compiler

Turns a declarative FilterSpec into a parameterized query over the asset
join graph. Pure: no I/O, no database handle.

Query aliases used in predicate templates:
    a    assets
    acc  accounts (trials)
    tc   trial_containers (sites and libraries)
    ss   study_subjects
    sa   study_arms
    spd  study_procedure_definitions
    ar   asset_reviews

Search compares lower(column) with a term lower-cased in Python, so the
store's lower() must fold non-ASCII letters too (asset_api.db registers a
Unicode lower() on SQLite).

Usage:
    from asset_explorer.filter_compiler import compile_filters

    query = compile_filters(FilterSpec(trials=["Trial A"]))
    query.where.to_sql()        # WHERE a.soft_deleted_at IS NULL AND (...)
    query.where.bind_values()   # {"trials": ["Trial A"]}
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from .country_codes import resolve_country_codes
from .data_models import (
    CompiledQuery,
    DataViewMode,
    FilterSpec,
    Predicate,
    ProcessedStatus,
    QueryParam,
    ReviewStatus,
    SortSpec,
    WhereClause,
)
from .errors import FilterValidationError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000
MAX_LIMIT = 5000

DEFAULT_SORT_FIELD = "uploadDate"

# Request sort field -> storage column. Anything else sorts by upload date.
SORT_COLUMN_MAP: Dict[str, str] = {
    "uploadDate": "a.created_at",
    "filename": "a.filename",
    "filesize": "a.filesize",
    "trialName": "acc.trial_name",
    "siteName": "tc.name",
    "siteCountry": "tc.country_code",
    "subjectNumber": "ss.number",
    "studyArm": "sa.display_name",
    "studyEvent": "se.display_name",
    "studyProcedure": "spd.display_name",
    "studyProcedureDate": "sp.date",
    "reviewed": "ar.reviewed",
    "processed": "a.processed",
}

SEARCH_COLUMNS = ("a.filename", "ss.number", "acc.trial_name", "tc.name")

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class PredicateBuilder:
    """
    Accumulates (predicate, parameters) pairs.

    Parameters are bound by name and may be referenced any number of times;
    placeholder positions are only computed when the finished WhereClause is
    rendered, so adding or skipping a predicate never shifts another one's
    parameters.
    """

    def __init__(self):
        self._predicates: List[Predicate] = []
        self._parameters: Dict[str, QueryParam] = {}

    def bind(self, name: str, value: Any, expanding: bool = False) -> str:
        """Register a parameter and return its name for use in templates."""
        if name in self._parameters:
            raise ValueError(f"Parameter '{name}' is already bound")
        self._parameters[name] = QueryParam(name=name, value=value, expanding=expanding)
        return name

    def add(self, dimension: str, template: str) -> None:
        """Append a predicate; every {name} in the template must be bound."""
        names = tuple(dict.fromkeys(_PLACEHOLDER.findall(template)))
        unbound = [name for name in names if name not in self._parameters]
        if unbound:
            raise ValueError(f"Predicate '{dimension}' references unbound parameters: {unbound}")
        self._predicates.append(Predicate(dimension=dimension, template=template, param_names=names))

    def add_in(self, dimension: str, column: str, values: List[Any]) -> None:
        """Membership predicate with the whole set bound to one parameter."""
        name = self.bind(dimension, list(values), expanding=True)
        self.add(dimension, f"{column} IN {{{name}}}")

    def build(self) -> WhereClause:
        return WhereClause(
            predicates=tuple(self._predicates),
            parameters=tuple(self._parameters.values()),
        )


# =============================================================================
# Helpers
# =============================================================================

def _coerce_int(value: Any, field_name: str, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise FilterValidationError(f"{field_name} must be an integer", field=field_name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FilterValidationError(
            f"{field_name} must be an integer, got '{value}'", field=field_name
        )


def resolve_limit(value: Any) -> int:
    return min(MAX_LIMIT, max(1, _coerce_int(value, "limit", DEFAULT_LIMIT)))


def resolve_page(value: Any) -> int:
    return max(1, _coerce_int(value, "page", 1))


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_date_bound(value: Any, field_name: str) -> Tuple[Optional[datetime], bool]:
    """
    Parse one end of the date range.

    Returns:
        Tuple of (timestamp, is_date_only). Plain dates resolve to midnight.

    Raises:
        FilterValidationError: If the value is not an ISO date or datetime.
    """
    if value is None or value == "":
        return None, False
    if isinstance(value, datetime):
        return _to_naive_utc(value), False
    if isinstance(value, date):
        return datetime.combine(value, time.min), True
    if not isinstance(value, str):
        raise FilterValidationError(f"{field_name} must be an ISO date string", field=field_name)

    text = value.strip()
    try:
        if _DATE_ONLY.match(text):
            return datetime.combine(date.fromisoformat(text), time.min), True
        return _to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00"))), False
    except ValueError:
        raise FilterValidationError(
            f"Malformed date '{value}' for {field_name} (expected YYYY-MM-DD)",
            field=field_name,
        )


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so the search term matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def resolve_sort(sort_by: Optional[str], sort_order) -> SortSpec:
    field_name = sort_by if sort_by in SORT_COLUMN_MAP else DEFAULT_SORT_FIELD
    return SortSpec(field=field_name, column=SORT_COLUMN_MAP[field_name], direction=sort_order)


def validate_view_mode(spec: FilterSpec) -> None:
    """Library filters and the Site-only view are mutually exclusive."""
    if spec.data_view_mode is DataViewMode.SITES and spec.libraries:
        raise FilterValidationError(
            'Cannot filter by libraries when dataViewMode is "sites"',
            field="libraries",
            details={"dataViewMode": spec.data_view_mode.value, "libraries": list(spec.libraries)},
        )


# =============================================================================
# Compiler
# =============================================================================

def compile_filters(spec: FilterSpec) -> CompiledQuery:
    """
    Compile a FilterSpec into predicates, parameters, sort and page window.

    Args:
        spec: Filter specification; empty sets are unconstrained.

    Returns:
        CompiledQuery whose WhereClause is shared by count and page fetch.

    Raises:
        FilterValidationError: Incompatible view mode / libraries combination,
            malformed date, or non-integer page/limit.
    """
    validate_view_mode(spec)
    limit = resolve_limit(spec.limit)
    page = resolve_page(spec.page)
    date_from, _ = parse_date_bound(spec.date_range.start, "dateRange.start")
    date_to, end_is_date_only = parse_date_bound(spec.date_range.end, "dateRange.end")

    builder = PredicateBuilder()
    builder.add("soft_delete", "a.soft_deleted_at IS NULL")

    if spec.trials:
        builder.bind("trials", list(spec.trials), expanding=True)
        builder.add("trials", "(acc.trial_name IN {trials} OR acc.company_name IN {trials})")

    if spec.sites:
        builder.add_in("sites", "tc.name", spec.sites)

    if spec.countries:
        builder.add_in("countries", "tc.country_code", resolve_country_codes(spec.countries))

    if spec.study_arms:
        builder.add_in("study_arms", "sa.display_name", spec.study_arms)

    if spec.procedures:
        builder.add_in("procedures", "spd.display_name", spec.procedures)

    if date_from is not None:
        builder.bind("date_from", date_from)
        builder.add("date_from", "a.created_at >= {date_from}")

    if date_to is not None:
        if end_is_date_only:
            # Whole end day: anything before the following midnight
            builder.bind("date_to", date_to + timedelta(days=1))
            builder.add("date_to", "a.created_at < {date_to}")
        else:
            builder.bind("date_to", date_to)
            builder.add("date_to", "a.created_at <= {date_to}")

    if spec.review_status is ReviewStatus.REVIEWED:
        builder.add("review_status", "ar.reviewed = true")
    elif spec.review_status is ReviewStatus.PENDING:
        builder.add("review_status", "(ar.reviewed = false OR ar.reviewed IS NULL)")

    if spec.processed_status is ProcessedStatus.YES:
        builder.add("processed_status", "a.processed = true")
    elif spec.processed_status is ProcessedStatus.NO:
        builder.add("processed_status", "(a.processed = false OR a.processed IS NULL)")

    term = (spec.search_term or "").strip()
    if term:
        builder.bind("search", f"%{escape_like(term.lower())}%")
        branches = [f"lower({column}) LIKE {{search}} ESCAPE '\\'" for column in SEARCH_COLUMNS]
        builder.add("search", "(" + " OR ".join(branches) + ")")

    if spec.data_view_mode is DataViewMode.SITES:
        builder.add("data_view_mode", "(tc.type = 'Site' AND tc.id IS NOT NULL)")
    elif spec.data_view_mode is DataViewMode.LIBRARY:
        builder.add("data_view_mode", "(tc.id IS NULL OR tc.type != 'Site')")

    if spec.libraries:
        builder.bind("libraries", list(spec.libraries), expanding=True)
        if spec.data_view_mode is DataViewMode.LIBRARY:
            builder.add("libraries", "tc.name IN {libraries}")
        else:
            builder.add("libraries", "(tc.type != 'Site' AND tc.name IN {libraries})")

    where = builder.build()
    sort = resolve_sort(spec.sort_by, spec.sort_order)
    logger.debug(
        f"Compiled {len(where.predicates)} predicates ({', '.join(where.dimensions)}), "
        f"{len(where.parameters)} parameters, sort={sort.column} {sort.direction.value}, "
        f"page={page}, limit={limit}"
    )
    return CompiledQuery(where=where, sort=sort, limit=limit, page=page)
