"""
Common Pydantic Schemas.

Shared request/response models used across multiple endpoints.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Error Responses
# ============================================================================

class ErrorDetail(BaseModel):
    """Detailed error information."""
    type: str = Field(description="Error type identifier")
    message: str = Field(description="Human-readable error message")
    details: Optional[str] = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """Standard error response wrapper."""
    success: bool = False
    error: ErrorDetail


class ValidationErrorItem(BaseModel):
    """Single request validation error."""
    loc: List[str] = Field(description="Error location path")
    msg: str = Field(description="Error message")
    type: str = Field(description="Error type")


class ValidationErrorResponse(BaseModel):
    """Request validation error response (400)."""
    success: bool = False
    error: ErrorDetail
    validation_errors: List[ValidationErrorItem]


# ============================================================================
# Success Responses
# ============================================================================

class DeleteResponse(BaseModel):
    """Delete operation response."""
    success: bool = True
    message: str = "Resource deleted successfully"
    deleted_id: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: datetime
    scheduler_running: bool
    scheduler_is_leader: bool
    scheduled_jobs_count: int
