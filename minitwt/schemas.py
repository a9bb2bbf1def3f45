"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming JSON bodies
- Response models for API responses

The wire format uses camelCase for userId/tweetId, matching the frontend.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ids are INTEGER columns; larger values can never match a row
MAX_ID = 2_147_483_647


# =============================================================================
# Pydantic Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    username: str = Field(..., description="Unique username")
    email: str = Field(..., description="Unique email address")
    password: str = Field(..., description="Plain-text password, hashed before storage")


class LoginRequest(BaseModel):
    email: str = Field(..., description="Email used at registration")
    password: str = Field(..., description="Plain-text password")


class TweetCreateRequest(BaseModel):
    """Body for POST /api/tweets."""
    user_id: int = Field(..., alias="userId", ge=1, le=MAX_ID, description="Author user id")
    content: str = Field(..., description="Tweet text")

    model_config = {"populate_by_name": True}


class LikeRequest(BaseModel):
    user_id: int = Field(..., alias="userId", ge=1, le=MAX_ID, description="Id of the liking user")

    model_config = {"populate_by_name": True}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str = Field(..., description="Human-readable outcome")


class RegisterResponse(MessageResponse):
    user_id: int = Field(..., alias="userId", description="New user id")

    model_config = {"populate_by_name": True}


class TweetCreatedResponse(MessageResponse):
    tweet_id: int = Field(..., alias="tweetId", description="New tweet id")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")
    details: Optional[List[Any]] = Field(None, description="Validation failures, when present")


class UserResponse(BaseModel):
    """
    User record returned by login.

    Deliberately has no password field: the stored hash never leaves the service.
    """
    id: int
    username: str
    email: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TweetResponse(BaseModel):
    """A tweet joined with its author's username."""
    id: int
    user_id: int
    content: str
    created_at: datetime
    username: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
