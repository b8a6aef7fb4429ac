"""Base resource class for declared cloud resources."""

from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from cloudplan.resources.markers import Compare, ResourceRef, collect_ref_specs, collect_refs

# EC2 tag limits.
_MAX_TAGS = 50
_MAX_TAG_KEY = 128
_MAX_TAG_VALUE = 256


class Resource(BaseModel):
    """A desired-state declaration.

    Subclasses set ``resource_type`` (the address prefix, e.g. ``aws_instance``)
    and ``namespace`` (names must be unique within it).  Nothing here talks to
    the cloud; handlers read the matching live objects.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    namespace: ClassVar[str]
    plan_priority: ClassVar[int] = 100
    # Attributes only known once the resource exists (read back from the cloud).
    computed_attributes: ClassVar[frozenset[str]] = frozenset({"id"})

    name: str = Field(pattern=r"^[a-zA-Z0-9_]+$")
    description: str = ""
    tags: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    depends_on: list[str] = []

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, tags: dict[str, str]) -> dict[str, str]:
        if len(tags) > _MAX_TAGS:
            raise ValueError(f"at most {_MAX_TAGS} tags are allowed, got {len(tags)}")
        for key, value in tags.items():
            if not key or len(key) > _MAX_TAG_KEY:
                raise ValueError(f"tag key {key!r} must be 1-{_MAX_TAG_KEY} characters")
            if key.lower().startswith("aws:"):
                raise ValueError(f"tag key {key!r} uses the reserved 'aws:' prefix")
            if len(value) > _MAX_TAG_VALUE:
                raise ValueError(f"tag {key!r} value exceeds {_MAX_TAG_VALUE} characters")
        return tags

    def reference_names(self) -> list[str]:
        return collect_refs(self)

    def references(self) -> list[ResourceRef]:
        """Typed references collected from ``Ref``-annotated fields."""
        return collect_ref_specs(self)

    def desired_attributes(self) -> dict[str, Any]:
        """Declared attributes as compared against recorded state."""
        return self.model_dump(exclude_none=True, exclude={"address", "depends_on"})

    @computed_field
    @property
    def address(self) -> str:
        """``<resource_type>.<name>``, e.g. ``aws_instance.web``."""
        return f"{self.resource_type}.{self.name}"
