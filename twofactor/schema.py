from enum import Enum
from pydantic import BaseModel, Field


class MFAMethod(str, Enum):
    """Second factors a challenge can be answered with."""
    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"


class MFAStatus(str, Enum):
    """Enrollment lifecycle state."""
    NOT_CONFIGURED = "not_configured"
    PENDING = "pending"
    ENABLED = "enabled"
    DISABLED = "disabled"


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    status: MFAStatus
    backup_codes_remaining: int | None = None
    setup_url: str | None = None


class EnrollmentResponse(BaseModel):
    secret: str
    provisioning_uri: str
    qr_code_base64: str
    backup_codes: list[str]
    instructions: str = (
        "Scan the QR code with your authenticator app and enter "
        "the 6-digit code to complete setup"
    )


class CodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class VerifyResponse(BaseModel):
    verified: bool


class ChallengeRequest(BaseModel):
    method: MFAMethod


class ChallengeResponse(BaseModel):
    challenge_id: str
    method: MFAMethod
    expires_in: int


class ChallengeVerifyRequest(BaseModel):
    challenge_id: str = Field(min_length=1, max_length=128)
    code: str = Field(min_length=1, max_length=64)


class BackupCodesResponse(BaseModel):
    codes: list[str]
    remaining: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str



class TwoFactorMethodInfo(BaseModel):
    name: str
    description: str
    enabled: bool
    setup_url: str | None = None
    challenge_url: str | None = None
    verify_url: str | None = None


class TwoFactorMethodsResponse(BaseModel):
    """Second factors the current user can use, with where to go next."""
    totp: TwoFactorMethodInfo
    sms: TwoFactorMethodInfo
    email: TwoFactorMethodInfo
    backup_codes: TwoFactorMethodInfo
