"""
Data models for asset filtering and the flat browsing view.

This module defines:
- FilterSpec: the declarative filter/sort/pagination request
- Predicate / WhereClause / SortSpec / CompiledQuery: compiler output
- AssetRecord: the flat, null-free record handed to consumers
- Pagination envelope types
"""

import re
from dataclasses import dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union

from .errors import FilterValidationError

_CAMEL_BOUNDARY = re.compile(r"_([a-z0-9])")


def to_camel(name: str) -> str:
    """snake_case -> camelCase."""
    return _CAMEL_BOUNDARY.sub(lambda m: m.group(1).upper(), name)


R = TypeVar("R", bound="CamelCaseRecord")


class CamelCaseRecord:
    """Mixin for dataclasses serialized with camelCase keys."""

    def to_dict(self) -> Dict[str, Any]:
        return {to_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        kwargs = {}
        for f in fields(cls):
            camel = to_camel(f.name)
            if camel in data:
                kwargs[f.name] = data[camel]
            elif f.name in data:
                kwargs[f.name] = data[f.name]
        return cls(**kwargs)


# =============================================================================
# Filter specification
# =============================================================================

class ReviewStatus(Enum):
    """Review state filter."""
    ALL = "all"
    REVIEWED = "reviewed"
    PENDING = "pending"      # never reviewed or explicitly not reviewed


class ProcessedStatus(Enum):
    """Processing state filter."""
    ALL = "all"
    YES = "yes"
    NO = "no"


class DataViewMode(Enum):
    """Restriction of the asset population by container type."""
    ALL = "all"
    SITES = "sites"          # Site-owned assets only
    LIBRARY = "library"      # Library-owned (or uncontained) assets only


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Any) -> "SortDirection":
        """Anything other than 'asc' sorts descending."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().lower() == "asc":
            return cls.ASC
        return cls.DESC


E = TypeVar("E", bound=Enum)


def _parse_enum(enum_cls: Type[E], value: Any, field_name: str, default: E) -> E:
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise FilterValidationError(
            f"Invalid {field_name} '{value}' (expected one of: {allowed})",
            field=field_name,
        )


def _parse_string_set(value: Any, field_name: str) -> List[str]:
    """Normalize a JSON list into a de-duplicated list of non-blank strings."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise FilterValidationError(
            f"{field_name} must be a list, got {type(value).__name__}",
            field=field_name,
        )

    items: List[str] = []
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in items:
            items.append(text)
    return items


DateInput = Union[str, date, None]


@dataclass
class DateRange:
    """Creation-date window. Either bound may be open."""
    start: DateInput = None
    end: DateInput = None


@dataclass
class FilterSpec:
    """
    Declarative filter, sort and pagination request for the asset view.

    Empty categorical sets mean "unconstrained", never "exclude all".
    page and limit are kept as received; the compiler clamps them.
    """
    trials: List[str] = field(default_factory=list)
    sites: List[str] = field(default_factory=list)
    libraries: List[str] = field(default_factory=list)
    countries: List[str] = field(default_factory=list)
    study_arms: List[str] = field(default_factory=list)
    procedures: List[str] = field(default_factory=list)
    date_range: DateRange = field(default_factory=DateRange)
    review_status: ReviewStatus = ReviewStatus.ALL
    processed_status: ProcessedStatus = ProcessedStatus.ALL
    search_term: str = ""
    sort_by: str = "uploadDate"
    sort_order: SortDirection = SortDirection.DESC
    page: Any = 1
    limit: Any = 1000
    data_view_mode: DataViewMode = DataViewMode.ALL

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FilterSpec":
        """
        Build a FilterSpec from a JSON request body.

        Accepts camelCase (wire format) or snake_case keys.

        Raises:
            FilterValidationError: If a field has the wrong shape or an
                enum field holds an unknown value.
        """
        data = data or {}

        def pick(camel: str, snake: str, default: Any = None) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        raw_range = pick("dateRange", "date_range") or {}
        if isinstance(raw_range, DateRange):
            date_range = raw_range
        elif isinstance(raw_range, dict):
            date_range = DateRange(start=raw_range.get("start"), end=raw_range.get("end"))
        else:
            raise FilterValidationError("dateRange must be an object", field="dateRange")

        search_term = pick("searchTerm", "search_term", "") or ""
        if not isinstance(search_term, str):
            raise FilterValidationError("searchTerm must be a string", field="searchTerm")

        return cls(
            trials=_parse_string_set(pick("trials", "trials"), "trials"),
            sites=_parse_string_set(pick("sites", "sites"), "sites"),
            libraries=_parse_string_set(pick("libraries", "libraries"), "libraries"),
            countries=_parse_string_set(pick("countries", "countries"), "countries"),
            study_arms=_parse_string_set(pick("studyArms", "study_arms"), "studyArms"),
            procedures=_parse_string_set(pick("procedures", "procedures"), "procedures"),
            date_range=date_range,
            review_status=_parse_enum(
                ReviewStatus, pick("reviewStatus", "review_status"), "reviewStatus", ReviewStatus.ALL
            ),
            processed_status=_parse_enum(
                ProcessedStatus, pick("processedStatus", "processed_status"), "processedStatus", ProcessedStatus.ALL
            ),
            search_term=search_term,
            sort_by=pick("sortBy", "sort_by", "uploadDate") or "",
            sort_order=SortDirection.parse(pick("sortOrder", "sort_order")),
            page=pick("page", "page", 1),
            limit=pick("limit", "limit", 1000),
            data_view_mode=_parse_enum(
                DataViewMode, pick("dataViewMode", "data_view_mode"), "dataViewMode", DataViewMode.ALL
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire format (camelCase) for the query endpoint."""

        def iso(value: DateInput) -> Optional[str]:
            if isinstance(value, date):
                return value.isoformat()
            return value

        return {
            "trials": list(self.trials),
            "sites": list(self.sites),
            "libraries": list(self.libraries),
            "countries": list(self.countries),
            "studyArms": list(self.study_arms),
            "procedures": list(self.procedures),
            "dateRange": {"start": iso(self.date_range.start), "end": iso(self.date_range.end)},
            "reviewStatus": self.review_status.value,
            "processedStatus": self.processed_status.value,
            "searchTerm": self.search_term,
            "sortBy": self.sort_by,
            "sortOrder": self.sort_order.value,
            "page": self.page,
            "limit": self.limit,
            "dataViewMode": self.data_view_mode.value,
        }


# =============================================================================
# Compiled query
# =============================================================================

# Placeholders in predicate templates are written as {name}
_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_IN_PLACEHOLDER = re.compile(r"\bIN \{(\w+)\}")


@dataclass(frozen=True)
class QueryParam:
    """One logical bound parameter. Expanding parameters hold a whole set."""
    name: str
    value: Any
    expanding: bool = False


@dataclass(frozen=True)
class Predicate:
    """A single filter condition and the parameters it references."""
    dimension: str                      # filter dimension that produced it
    template: str                       # SQL with {name} placeholders
    param_names: Tuple[str, ...] = ()

    def render(self, placeholder: Callable[[str], str]) -> str:
        return _PLACEHOLDER.sub(lambda m: placeholder(m.group(1)), self.template)


@dataclass(frozen=True)
class WhereClause:
    """
    Ordered predicates plus the ordered, de-duplicated parameter list.

    The same instance is handed to both the count and the page fetch so the
    total and the page can never be computed from different filters.
    """
    predicates: Tuple[Predicate, ...]
    parameters: Tuple[QueryParam, ...]

    @property
    def dimensions(self) -> List[str]:
        return [p.dimension for p in self.predicates]

    def parameter(self, name: str) -> QueryParam:
        for param in self.parameters:
            if param.name == name:
                return param
        raise KeyError(name)

    def to_sql(self) -> str:
        """WHERE clause with :name placeholders (SQLAlchemy text())."""
        if not self.predicates:
            return ""
        rendered = [p.render(lambda name: f":{name}") for p in self.predicates]
        return "WHERE " + " AND ".join(rendered)

    def bind_values(self) -> Dict[str, Any]:
        return {param.name: param.value for param in self.parameters}

    def to_positional(self) -> Tuple[str, List[Any]]:
        """
        WHERE clause with $n placeholders and the matching value list.

        Positions follow parameter order and are assigned once; every
        reference to a parameter reuses its position. Set-valued parameters
        render as '= ANY($n)'.
        """
        positions = {param.name: index for index, param in enumerate(self.parameters, start=1)}

        def render(predicate: Predicate) -> str:
            sql = _IN_PLACEHOLDER.sub(lambda m: f"= ANY(${positions[m.group(1)]})", predicate.template)
            return _PLACEHOLDER.sub(lambda m: f"${positions[m.group(1)]}", sql)

        if not self.predicates:
            return "", []
        sql = "WHERE " + " AND ".join(render(p) for p in self.predicates)
        return sql, [param.value for param in self.parameters]


@dataclass(frozen=True)
class SortSpec:
    """Resolved ordering: allow-listed column, direction, stable tiebreak."""
    field: str
    column: str
    direction: SortDirection = SortDirection.DESC
    tiebreak: str = "a.id"

    def to_sql(self) -> str:
        direction = "ASC" if self.direction is SortDirection.ASC else "DESC"
        return f"ORDER BY {self.column} {direction} NULLS LAST, {self.tiebreak} {direction}"


@dataclass(frozen=True)
class CompiledQuery:
    """Output of the filter compiler."""
    where: WhereClause
    sort: SortSpec
    limit: int
    page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def predicates(self) -> Tuple[Predicate, ...]:
        return self.where.predicates

    @property
    def parameters(self) -> Tuple[QueryParam, ...]:
        return self.where.parameters


# =============================================================================
# Flat asset record
# =============================================================================

@dataclass
class AssetRecord(CamelCaseRecord):
    """
    Normalized asset row for the browsing view.

    Optional associations default to empty strings, False or 0 so that
    consumers never have to null-check.
    """
    asset_id: int = 0
    asset_title: str = ""
    trial_id: int = 0
    trial_name: str = ""
    site_id: int = 0
    site_name: str = ""
    site_country: str = ""
    site_country_code: str = ""
    library_id: int = 0
    library_name: str = ""
    subject_number: str = ""
    study_arm: str = ""
    study_event: str = ""
    study_procedure: str = ""
    study_procedure_date: str = ""
    upload_date: str = ""
    uploaded_by: str = ""
    asset_duration: str = ""
    file_size: int = 0
    file_size_formatted: str = ""
    processed: bool = False
    reviewed: bool = False
    reviewed_by: str = ""
    reviewed_date: str = ""
    evaluator: str = ""
    comments: str = ""
    asset_link: str = ""


# =============================================================================
# Pagination
# =============================================================================

@dataclass
class PaginationMeta(CamelCaseRecord):
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass
class PaginationLinks:
    current: str                        # serialized as "self"
    first: str
    last: Optional[str]
    prev: Optional[str]
    next: Optional[str]

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "self": self.current,
            "first": self.first,
            "last": self.last,
            "prev": self.prev,
            "next": self.next,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaginationLinks":
        return cls(
            current=data.get("self", ""),
            first=data.get("first", ""),
            last=data.get("last"),
            prev=data.get("prev"),
            next=data.get("next"),
        )


@dataclass
class PaginationEnvelope:
    meta: PaginationMeta
    links: PaginationLinks

    def to_dict(self) -> Dict[str, Any]:
        return {"meta": self.meta.to_dict(), "links": self.links.to_dict()}
