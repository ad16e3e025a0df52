from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateMemoryInput(_ToolInput):
    type: str = Field(..., min_length=1, description="Memory category, e.g. 'fact' or 'learning'")
    content: Union[Dict[str, Any], str] = Field(..., description="Schema-free JSON object or plain text")
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None


class SearchMemoryInput(_ToolInput):
    query: str = Field(..., min_length=1, max_length=10_000)
    type: Optional[str] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1, description="Clamped to the configured maximum")
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ListMemoryInput(_ToolInput):
    type: Optional[str] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1, description="Clamped to the configured maximum")
    offset: int = Field(default=0, ge=0)
    created_after: Optional[str] = Field(default=None, description="ISO-8601 timestamp (inclusive)")
    created_before: Optional[str] = Field(default=None, description="ISO-8601 timestamp (inclusive)")
    order_by: Literal["created_at", "updated_at", "confidence", "type"] = "created_at"
    order: Literal["asc", "desc"] = "desc"


class MemoryIdInput(_ToolInput):
    id: str = Field(..., min_length=1, max_length=256)


class UpdateMemoryInput(_ToolInput):
    id: str = Field(..., min_length=1, max_length=256)
    type: Optional[str] = Field(default=None, min_length=1)
    content: Optional[Union[Dict[str, Any], str]] = None
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None


class LinkMemoryInput(_ToolInput):
    source_id: str = Field(..., min_length=1, max_length=256)
    target_id: str = Field(..., min_length=1, max_length=256)
    relationship: str = Field(..., min_length=1)
    strength: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None


class UnlinkMemoryInput(_ToolInput):
    source_id: str = Field(..., min_length=1, max_length=256)
    target_id: str = Field(..., min_length=1, max_length=256)
    relationship: str = Field(..., min_length=1)


class EmptyInput(_ToolInput):
    pass
