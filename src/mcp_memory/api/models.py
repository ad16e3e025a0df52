"""
API Request/Response Models
===========================
Pydantic models for the REST wrapper. Domain rules (tag limits, lengths
from config) are enforced by the memory service; these models only check
shape.
"""

from typing import Optional, Dict, Any, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreateMemoryRequest(BaseModel):
    """Request model for storing a memory."""
    model_config = ConfigDict(extra="forbid")

    type: str = Field(
        ...,
        min_length=1,
        description="Memory category",
        examples=["learning"]
    )
    content: Union[Dict[str, Any], str] = Field(
        ...,
        description="JSON object or plain text",
        examples=[{"topic": "Docker"}]
    )
    source: Optional[str] = None
    tags: Optional[List[str]] = Field(default=None, examples=[["docker", "test"]])
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        """Ensure text content is not empty or whitespace only."""
        if isinstance(v, str) and not v.strip():
            raise ValueError('Content cannot be empty or whitespace only')
        return v


class UpdateMemoryRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    model_config = ConfigDict(extra="forbid")

    type: Optional[str] = Field(default=None, min_length=1)
    content: Optional[Union[Dict[str, Any], str]] = None
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None


class SearchRequest(BaseModel):
    """Request model for semantic search."""
    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., max_length=10000, examples=["Docker"])
    type: Optional[str] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=1, description="Clamped to memory.max_limit")
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator('query')
    @classmethod
    def validate_query(cls, v: str) -> str:
        """Ensure query is not empty or whitespace only."""
        if not v or not v.strip():
            raise ValueError('Query cannot be empty or whitespace only')
        return v


class BatchOperation(BaseModel):
    operation: Literal["create", "update", "delete"]
    id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class BatchRequest(BaseModel):
    operations: List[BatchOperation] = Field(..., min_length=1, max_length=100)


class LinkRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_id: str = Field(..., min_length=1)
    relationship: str = Field(..., min_length=1)
    strength: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None


class MemoryResponse(BaseModel):
    id: str
    type: str
    content: Union[Dict[str, Any], str]
    source: Optional[str] = None
    tags: List[str]
    confidence: float
    metadata: Dict[str, Any]
    created_at: str
    updated_at: str
    similarity: Optional[float] = None


class ListResponse(BaseModel):
    memories: List[MemoryResponse]
    total: int
    limit: int
    offset: int


class SearchResponse(BaseModel):
    memories: List[MemoryResponse]
    total: int
    query: str


class DeleteResponse(BaseModel):
    ok: bool
    deleted_id: str


class LinkResponse(BaseModel):
    id: str
    source_id: str
    target_id: str
    relationship: str
    strength: float
    metadata: Dict[str, Any]
    created_at: Optional[str] = None


class LinksResponse(BaseModel):
    links: List[LinkResponse]
    total: int


class UnlinkResponse(BaseModel):
    deleted: bool
    source_id: str
    target_id: str
    relationship: str


class BatchValidationError(BaseModel):
    index: int
    operation: Optional[str] = None
    field: str
    message: str


class BatchValidationResponse(BaseModel):
    valid: bool
    errors: List[BatchValidationError]
    total: int


class HealthResponse(BaseModel):
    status: str
    storage: bool
    embedding: bool
    version: str
    timestamp: str


class ReadinessResponse(BaseModel):
    status: str
    checks: Dict[str, bool]
    timestamp: str


class LivenessResponse(BaseModel):
    status: str
    timestamp: str
