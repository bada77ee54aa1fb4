"""Request models for the authentication and account endpoints.

Wire names are camelCase; Python attributes stay snake_case.
"""

from pydantic import BaseModel, ConfigDict, Field

from ..services.identity_types import Intent


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class PasswordLoginRequest(CamelModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    remember_me: bool = Field(False, alias="rememberMe")


class RegisterRequest(CamelModel):
    email: str = Field(min_length=3)
    password: str
    nickname: str | None = None


class SocialAuthRequest(CamelModel):
    """Raw provider token plus what the caller wants to do with it."""

    token: str = Field(min_length=1)
    intent: Intent


class CompleteSignupRequest(CamelModel):
    external_id: str = Field(min_length=1, alias="externalId")
    email: str = Field(min_length=3)
    display_name: str | None = Field(None, alias="displayName")
    avatar_url: str | None = Field(None, alias="avatarUrl")


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1, alias="refreshToken")


class LogoutRequest(CamelModel):
    refresh_token: str | None = Field(None, alias="refreshToken")


class VerifyEmailRequest(CamelModel):
    token: str = Field(min_length=1)


class ResendVerificationRequest(CamelModel):
    email: str = Field(min_length=3)


class ChangePasswordRequest(CamelModel):
    current_password: str | None = Field(None, alias="currentPassword")
    new_password: str = Field(min_length=1, alias="newPassword")


class UpdateProfileRequest(CamelModel):
    nickname: str | None = None
    avatar_url: str | None = Field(None, alias="avatarUrl")
