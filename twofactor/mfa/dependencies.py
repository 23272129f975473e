# (c) Copyright Datacraft, 2026
"""FastAPI dependencies for 2FA services and step-up authentication."""
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Response, status
from sqlalchemy.orm import Session

from twofactor.config import get_settings
from twofactor.db.engine import get_db
from twofactor.utils import get_current_user_id

from .delivery import Delivery, build_delivery
from .service import TwoFactorService
from .store import EphemeralStore, build_store
from .vault import SecretVault

logger = logging.getLogger(__name__)

SETUP_URL = "/2fa/setup"


class TwoFactorOperation(str, Enum):
	"""Operations that demand a fresh second factor."""
	# Financial operations
	PAYMENT_PROCESSING = "payment_processing"
	REFUND_PROCESSING = "refund_processing"
	BANK_ACCOUNT_CHANGE = "bank_account_change"

	# Account security
	PASSWORD_CHANGE = "password_change"
	EMAIL_CHANGE = "email_change"
	PHONE_CHANGE = "phone_change"
	TWO_FACTOR_DISABLE = "two_factor_disable"
	BACKUP_CODES_REGENERATE = "backup_codes_regenerate"

	# Business operations
	SUPPLIER_APPROVAL = "supplier_approval"
	COMPLIANCE_OVERRIDE = "compliance_override"
	LARGE_ORDER_APPROVAL = "large_order_approval"
	CONTRACT_SIGNING = "contract_signing"

	# Data operations
	DATA_EXPORT = "data_export"
	BULK_DELETE = "bulk_delete"
	USER_IMPERSONATION = "user_impersonation"

	# Administrative
	ADMIN_SETTINGS = "admin_settings"
	USER_SUSPENSION = "user_suspension"
	ROLE_ASSIGNMENT = "role_assignment"


@lru_cache()
def get_store() -> EphemeralStore:
	return build_store(get_settings().redis_url)


@lru_cache()
def get_delivery() -> Delivery:
	return build_delivery(get_settings())


@lru_cache()
def get_vault() -> SecretVault:
	settings = get_settings()
	return SecretVault(settings.encryption_key, settings.encryption_salt)


def get_two_factor_service(
	db: Session = Depends(get_db),
	store: EphemeralStore = Depends(get_store),
	delivery: Delivery = Depends(get_delivery),
	vault: SecretVault = Depends(get_vault),
) -> TwoFactorService:
	return TwoFactorService(db, store, delivery, get_settings(), vault=vault)


@dataclass
class StepUpResult:
	"""Outcome of a step-up check attached to the request."""
	operation: str
	required: bool
	passed: bool
	challenge_id: str | None = None


def require_two_factor(operation: TwoFactorOperation | str = "sensitive_operation"):
	"""Demand a verified challenge when the caller has 2FA enabled.

	The client sends ``X-2FA-Challenge`` (id from ``POST /2fa/challenge``)
	and ``X-2FA-Token`` (the code). Missing headers answer 428, a failed
	verification 401.
	"""
	operation = operation.value if isinstance(operation, TwoFactorOperation) else operation

	async def dependency(
		user_id: UUID = Depends(get_current_user_id),
		service: TwoFactorService = Depends(get_two_factor_service),
		two_factor_token: str | None = Header(default=None, alias="X-2FA-Token"),
		challenge_id: str | None = Header(default=None, alias="X-2FA-Challenge"),
	) -> StepUpResult:
		if not await service.is_enabled(user_id):
			return StepUpResult(operation=operation, required=False, passed=True)

		if not two_factor_token or not challenge_id:
			logger.warning(
				f"2FA token or challenge ID missing for {operation} by user {user_id}"
			)
			raise HTTPException(
				status_code=status.HTTP_428_PRECONDITION_REQUIRED,
				detail={
					"code": "TWO_FACTOR_REQUIRED",
					"message": "Two-factor authentication required for this operation",
					"operation": operation,
				},
			)

		if not await service.verify_challenge(challenge_id, two_factor_token, user_id=user_id):
			logger.warning(f"Invalid 2FA token for {operation} by user {user_id}")
			raise HTTPException(
				status_code=status.HTTP_401_UNAUTHORIZED,
				detail={
					"code": "INVALID_TWO_FACTOR_TOKEN",
					"message": "Invalid two-factor authentication token",
					"operation": operation,
				},
			)

		logger.info(f"2FA step-up passed for {operation} by user {user_id}")
		return StepUpResult(
			operation=operation,
			required=True,
			passed=True,
			challenge_id=challenge_id,
		)

	return dependency


async def check_two_factor_required(
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> bool:
	"""Whether the caller will be asked for a second factor."""
	return await service.is_enabled(user_id)


def recommend_two_factor(operation: str = "recommended_operation"):
	"""Advertise 2FA setup in response headers for users without it."""

	async def dependency(
		response: Response,
		user_id: UUID = Depends(get_current_user_id),
		service: TwoFactorService = Depends(get_two_factor_service),
	) -> None:
		if await service.is_enabled(user_id):
			return

		logger.info(f"2FA recommended for {operation} to user {user_id}")
		response.headers["X-2FA-Recommendation"] = "true"
		response.headers["X-2FA-Setup-URL"] = SETUP_URL

	return dependency
