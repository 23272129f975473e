import logging

from functools import lru_cache
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Algs(str, Enum):
    HS256 = "HS256"
    HS384 = "HS384"
    HS512 = "HS512"
    RS256 = "RS256"
    RS384 = "RS384"
    RS512 = "RS512"
    ES256 = "ES256"
    ES384 = "ES384"
    ES512 = "ES512"


class Settings(BaseSettings):
    secret_key: str
    db_url: str = "sqlite:///./twofactor.db"
    redis_url: str | None = Field(default=None, description="Ephemeral store; unset means in-process store")

    token_algorithm: Algs = Algs.HS256
    cookie_name: str = "access_token"

    # Secret vault
    encryption_key: str = Field(min_length=16, description="Passphrase the vault key is derived from")
    encryption_salt: str = "twofactor-secret-vault"

    # TOTP settings
    mfa_issuer: str = Field(default="Marketplace", description="TOTP issuer name")
    totp_secret_length: int = Field(default=32, ge=16, description="Raw secret length in bytes")
    totp_valid_window: int = Field(default=1, ge=0, le=10, description="Accepted steps before/after now")

    # Backup codes
    mfa_backup_codes_count: int = Field(default=10, gt=0, description="Number of backup codes to generate")
    mfa_backup_code_length: int = Field(default=8, ge=6, description="Characters per backup code")

    # Out-of-band challenges
    challenge_sms_ttl: int = Field(gt=0, default=300)
    challenge_email_ttl: int = Field(gt=0, default=600)
    challenge_totp_ttl: int = Field(gt=0, default=300)
    challenge_max_attempts: int = Field(gt=0, default=3)
    status_cache_ttl: int = Field(gt=0, default=3600)

    # Delivery providers
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str = "noreply@example.com"
    delivery_timeout: float = Field(gt=0, default=10.0)

    model_config = SettingsConfigDict(env_prefix='tfa_')


@lru_cache()
def get_settings():
    return Settings()
