from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.application.canvas_session import CanvasSession
from src.infrastructure.api.dependencies import get_current_user, get_profile_repo, get_session
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


class ValidateTokenResponse(BaseModel):
    """Response model for token validation."""
    user_id: str = Field(..., description="Unique identifier of the authenticated user")
    email: str | None = Field(None, description="Email address of the authenticated user", example="user@example.com")


@router.post(
    "/validate",
    response_model=ValidateTokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Authentication Token",
    description="""
    Validate the provided JWT token and ensure the user profile exists.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="User information confirming valid authentication",
)
def validate_token(
    user=Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repo),
):
    """Validate JWT token and ensure user profile exists."""
    prof = profiles.upsert(user.id, user.email)
    return {"user_id": prof.id, "email": prof.email}


class UserProfileResponse(BaseModel):
    """Response model for user profile information."""
    id: str = Field(..., description="Unique identifier of the user")
    email: str | None = Field(None, description="Email address of the user", example="user@example.com")
    credits: Decimal = Field(..., description="Credit balance", example="4.50")
    role: str = Field(..., description="Account role; 'pro' generates without charges", example="user")
    unlimited: bool = Field(..., description="True when generations are not charged")
    created_at: datetime | None = Field(None, description="ISO timestamp when the user profile was created")


@router.get(
    "/me",
    response_model=UserProfileResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Current User Profile",
    description="""
    Retrieve the profile of the authenticated user, including the stored
    credit balance and role. The canvas ledger is brought in line with the
    stored balance.

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Complete user profile information",
)
def get_me(
    user=Depends(get_current_user),
    session: CanvasSession = Depends(get_session),
    profiles: ProfileRepository = Depends(get_profile_repo),
):
    """Get current user's profile information."""
    prof = profiles.get(user.id) or profiles.upsert(user.id, user.email)
    with session.lock:
        session.ledger.apply_authoritative(prof.credits, prof.role)
    return {
        "id": prof.id,
        "email": prof.email,
        "credits": prof.credits,
        "role": prof.role,
        "unlimited": prof.is_unlimited,
        "created_at": prof.created_at,
    }
