"""
Allowance and metered action schemas.
"""

from typing import Any

from pydantic import BaseModel, Field, HttpUrl


class AllowanceResponse(BaseModel):
    """Outcome of an allowance check. ``limit``/``remaining`` are null when unlimited."""

    action: str
    can_proceed: bool
    limit: int | None = None
    remaining: int | None = None
    used: int | None = None
    reason: str | None = None
    degraded: bool = False
    guest: bool = False


class AnalysisRequest(BaseModel):
    """Request to score one page for a keyword."""

    keyword: str = Field(..., min_length=1, max_length=500)
    url: HttpUrl
    project_id: str | None = None


class ComparisonRequest(BaseModel):
    """Request to compare the user's page with a competitor's."""

    keyword: str = Field(..., min_length=1, max_length=500)
    user_url: HttpUrl
    competitor_url: HttpUrl


class ActionResponse(BaseModel):
    """Scoring output plus the allowance left after the action."""

    id: str | None = None
    result: dict[str, Any]
    remaining: int | None = None
    degraded: bool = False


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    remaining: int | None = None


class AdminSubscriptionUpdate(BaseModel):
    """Admin override of a user's plan."""

    plan_id: str = Field(..., description="Internal plan id")
    status: str = Field("active", description="active, cancelled, expired or past_due")
