"""
Typed metadata stored in JSON columns.

Relationship ``custom_metadata`` and job ``payload`` are serialized from these
models when written and parsed back when read; nothing else in the package
touches the raw JSON.
"""

import json
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

METADATA_VERSION = 1


class _MetadataBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = METADATA_VERSION


class CallMetadata(_MetadataBase):
    """Call site of a function or method."""

    kind: Literal["call"] = "call"
    line: Optional[int] = None
    is_async: bool = False
    argument_count: Optional[int] = None


class ImportMetadata(_MetadataBase):
    """Import statement."""

    kind: Literal["import"] = "import"
    module: Optional[str] = None
    imported_names: list[str] = Field(default_factory=list)
    is_default: bool = False


class InheritanceMetadata(_MetadataBase):
    """extends/implements clause."""

    kind: Literal["inheritance"] = "inheritance"
    line: Optional[int] = None


class GenericMetadata(_MetadataBase):
    """Any shape without a dedicated model, kept as a plain mapping."""

    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)


RelationshipMetadata = Annotated[
    Union[CallMetadata, ImportMetadata, InheritanceMetadata, GenericMetadata],
    Field(discriminator="kind"),
]

_relationship_metadata_adapter: TypeAdapter = TypeAdapter(RelationshipMetadata)


def parse_relationship_metadata(raw: Optional[str]) -> Optional[RelationshipMetadata]:
    """Parse a stored ``custom_metadata`` value.

    Untagged or invalid JSON objects are wrapped in ``GenericMetadata`` so
    callers always get a typed value; empty values give None.
    """
    if not raw:
        return None

    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Relationship metadata is not JSON: {raw[:80]!r}")
        return GenericMetadata(data={"raw": raw})

    if not isinstance(decoded, dict):
        return GenericMetadata(data={"value": decoded})

    try:
        return _relationship_metadata_adapter.validate_python(decoded)
    except PydanticValidationError:
        data = {k: v for k, v in decoded.items() if k not in ("kind", "version")}
        return GenericMetadata(data=data)


def dump_metadata(metadata: Optional[BaseModel]) -> Optional[str]:
    """Serialize a metadata model for storage."""
    if metadata is None:
        return None
    return metadata.model_dump_json()


class JobPayload(BaseModel):
    """Options attached to a background enrichment job."""

    model_config = ConfigDict(extra="ignore")

    version: int = METADATA_VERSION
    budget_hint: Optional[int] = None  # Overrides the configured output budget
    message_limit: int = 200  # Messages considered for topic generation
    reason: Optional[str] = None  # Why the job was enqueued (for logs)


def parse_job_payload(raw: Optional[str]) -> JobPayload:
    """Parse a stored job payload.

    Raises:
        ValueError: If the payload is present but not a valid JobPayload
    """
    if not raw:
        return JobPayload()
    try:
        return JobPayload.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid job payload: {e.errors()[0]['msg']}") from e
