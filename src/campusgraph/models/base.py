"""Base models and enums for campusgraph entities."""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EntityKind(str, Enum):
    """Kinds of entities in the catalog."""

    COLLEGE = "college"
    COURSE = "course"
    CUTOFF = "cutoff"
    REGION = "region"


class EntityBase(BaseModel):
    """Base class for all catalog entities.

    Store rows carry the display name in a ``name`` column; it is accepted
    under either key.
    """

    id: str = Field(..., min_length=1, description="Canonical identifier")
    entity_type: EntityKind = Field(..., description="Entity kind discriminator")
    display_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("display_name", "name"),
        description="Human-readable name",
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def key(self) -> tuple[EntityKind, str]:
        """Identity of the entity across namespaces."""
        return (self.entity_type, self.id)

    def attributes(self) -> dict[str, Any]:
        """Variant-specific attributes, JSON-serializable."""
        return self.model_dump(
            mode="json", exclude={"id", "entity_type", "display_name"}
        )
