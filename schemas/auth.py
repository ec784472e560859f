"""Authentication schemas."""

from pydantic import BaseModel, ConfigDict, Field


class FirebaseTokenClaims(BaseModel):
    """Claims of a verified Firebase ID token."""

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., description="Firebase UID (subject)")
    email: str | None = Field(default=None, description="User email address")
    email_verified: bool = Field(default=False, description="Email verification status")
    name: str | None = Field(default=None, description="Display name")
    picture: str | None = Field(default=None, description="Profile picture URL")
    iss: str | None = Field(default=None, description="JWT issuer")
    aud: str | None = Field(default=None, description="JWT audience")
    iat: int | None = Field(default=None, description="JWT issued at")
    exp: int | None = Field(default=None, description="JWT expiration time")
    auth_time: int | None = Field(default=None, description="Time of authentication")


class AuthenticatedUser(BaseModel):
    """Simplified authenticated user for internal use."""

    user_id: str = Field(..., description="Firebase UID")
    email: str | None = Field(default=None, description="User email")
    name: str | None = Field(default=None, description="User name")
    email_verified: bool = Field(default=False, description="Email verified")


class AuthError(Exception):
    """Authentication error exception."""

    def __init__(self, error: str, description: str, status_code: int = 401) -> None:
        """Initialize authentication error."""
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(f"{error}: {description}")


class KineProfileResponse(BaseModel):
    """Profile of the authenticated kiné."""

    id: int
    uid: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    plan_type: str | None = None
    subscription_status: str | None = None
