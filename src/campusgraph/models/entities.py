"""Entity variants and link-table rows for the catalog.

Each variant mirrors one relational collection. Rows are validated into
variants at the store boundary through :func:`parse_entity`.
"""

from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from ..errors import RecordValidationError
from .base import EntityBase, EntityKind


class College(EntityBase):
    """A college row."""

    entity_type: Literal[EntityKind.COLLEGE] = EntityKind.COLLEGE
    region: str | None = Field(default=None, description="Region id/code")
    locality: str | None = Field(default=None, description="City or district")
    category: str | None = Field(default=None, description="Management category")
    rank: int | None = Field(default=None, ge=1, description="National ranking")
    stream: str | None = None


class Course(EntityBase):
    """A course row, owned by a college through ``college_id``."""

    entity_type: Literal[EntityKind.COURSE] = EntityKind.COURSE
    college_id: str | None = None
    # Denormalized copy of the owning college's name
    college_name: str | None = None
    stream: str | None = None
    branch: str | None = None
    seats: int | None = Field(default=None, ge=0)


class CutoffRecord(EntityBase):
    """A historical admission-cutoff row."""

    entity_type: Literal[EntityKind.CUTOFF] = EntityKind.CUTOFF
    college_id: str | None = None
    course_id: str | None = None
    year: int
    category: str
    opening_rank: int | None = None
    closing_rank: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("display_name") or data.get("name")):
            data = dict(data)
            data["display_name"] = (
                f"{data.get('year')} {data.get('category')} cutoff "
                f"({data.get('college_id') or '?'}/{data.get('course_id') or '?'})"
            )
        return data


class Region(EntityBase):
    """A region (state) row."""

    entity_type: Literal[EntityKind.REGION] = EntityKind.REGION
    code: str | None = None


Entity = Union[College, Course, CutoffRecord, Region]

ENTITY_CLASSES: dict[EntityKind, type[EntityBase]] = {
    EntityKind.COLLEGE: College,
    EntityKind.COURSE: Course,
    EntityKind.CUTOFF: CutoffRecord,
    EntityKind.REGION: Region,
}


def parse_entity(kind: EntityKind, row: dict[str, Any]) -> Entity:
    """Validate a raw store row into the variant for ``kind``.

    Raises:
        RecordValidationError: The row is missing required fields.
    """
    model = ENTITY_CLASSES[kind]
    data = {k: v for k, v in row.items() if k != "entity_type"}
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise RecordValidationError(
            f"Invalid {kind.value} row {row.get('id')!r}: {e.error_count()} errors",
            details={"entity_type": kind.value, "row_id": row.get("id")},
        ) from e


# =========================
# Link tables
# =========================


class RegionCollegeLink(BaseModel):
    """Row of the region/college cross-reference table."""

    college_id: str
    region_id: str
    # Denormalized "name + locality + region" key used for fallback lookups
    composite_college_key: str | None = None


class RegionCourseCollegeLink(BaseModel):
    """Row of the region/course/college cross-reference table."""

    college_id: str
    course_id: str
    region_id: str
    stream: str | None = None


class CrossReferenceFilters(BaseModel):
    """Filters for the flat cross-reference query."""

    region_id: str | None = None
    course_id: str | None = None
    college_id: str | None = None
    stream: str | None = None

    def is_empty(self) -> bool:
        """True when no filter carries a value."""
        return not any(
            (self.region_id, self.course_id, self.college_id, self.stream)
        )


class UserPreferences(BaseModel):
    """Stored preferences used by the personalization signal."""

    preferred_regions: list[str] = Field(default_factory=list)
    preferred_streams: list[str] = Field(default_factory=list)
    preferred_categories: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """True when no preference is set."""
        return not (
            self.preferred_regions
            or self.preferred_streams
            or self.preferred_categories
        )
