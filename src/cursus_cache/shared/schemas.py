"""
Shared Schemas - Pydantic Models for Validation and Serialization

Request and response models for the cache API. Field aliases follow the
camelCase wire format used by the web application.
"""
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .caching.invalidation import InvalidationEvent, InvalidationEventType


class InvalidationRequest(BaseModel):
    """Body of ``POST /api/cache/invalidate``.

    ``type`` and ``entityId`` are optional at the schema level so the route
    can answer a missing field with its own 400 message.
    """
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[str] = None
    entity_id: Optional[str] = Field(None, alias="entityId")
    user_id: Optional[str] = Field(None, alias="userId")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("entity_id", "user_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Union[str, int, None]):
        if isinstance(v, bool):
            raise ValueError("identifiers must be strings or integers")
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v):
        return {} if v is None else v

    def has_required_fields(self) -> bool:
        return bool(self.type) and bool(self.entity_id)

    def to_event(self) -> InvalidationEvent:
        """Build the domain event; ValueError on an unknown type."""
        # Member names ("LEARNING_PATH") and values ("learning_path") are both accepted
        try:
            event_type = InvalidationEventType(self.type.strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in InvalidationEventType)
            raise ValueError(f"Invalid invalidation type '{self.type}'. Use one of: {allowed}") from None
        return InvalidationEvent(
            type=event_type,
            entity_id=self.entity_id,
            user_id=self.user_id,
            metadata=self.metadata
        )


class ErrorResponse(BaseModel):
    """Error envelope returned by every endpoint."""
    success: bool = False
    error: str
    details: Optional[str] = None
