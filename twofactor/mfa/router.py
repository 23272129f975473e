# (c) Copyright Datacraft, 2026
"""2FA API router."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from twofactor import schema
from twofactor.utils import get_current_user_id

from .dependencies import (
	SETUP_URL,
	StepUpResult,
	TwoFactorOperation,
	get_two_factor_service,
	require_two_factor,
)
from .service import TwoFactorService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/2fa", tags=["2FA"])

CHALLENGE_URL = "/2fa/challenge"
BACKUP_CODE_VERIFY_URL = "/2fa/backup-codes/verify"


@router.get("/status", response_model=schema.TwoFactorStatusResponse)
async def get_status(
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.TwoFactorStatusResponse:
	"""Get 2FA status for the current user."""
	result = service.get_status(user_id)
	return schema.TwoFactorStatusResponse(
		enabled=result.enabled,
		status=result.status,
		backup_codes_remaining=result.backup_codes_remaining,
		setup_url=None if result.enabled else SETUP_URL,
	)


@router.get("/methods", response_model=schema.TwoFactorMethodsResponse)
async def get_methods(
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.TwoFactorMethodsResponse:
	"""List the second factors available to the current user."""
	methods = await service.available_methods(user_id)
	return schema.TwoFactorMethodsResponse(
		totp=schema.TwoFactorMethodInfo(
			name="Authenticator App",
			description="Use Google Authenticator, Authy, or similar apps",
			enabled=methods.totp,
			setup_url=None if methods.totp else SETUP_URL,
		),
		sms=schema.TwoFactorMethodInfo(
			name="SMS",
			description="Receive codes via text message",
			enabled=methods.sms,
			challenge_url=CHALLENGE_URL,
		),
		email=schema.TwoFactorMethodInfo(
			name="Email",
			description="Receive codes via email",
			enabled=methods.email,
			challenge_url=CHALLENGE_URL,
		),
		backup_codes=schema.TwoFactorMethodInfo(
			name="Backup Codes",
			description="Use single-use backup codes",
			enabled=methods.backup_codes,
			verify_url=BACKUP_CODE_VERIFY_URL,
		),
	)


@router.post("/setup", response_model=schema.EnrollmentResponse)
async def setup(
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.EnrollmentResponse:
	"""Start enrollment: secret, QR code and backup codes, shown once."""
	result = await service.start_enrollment(user_id)
	return schema.EnrollmentResponse(
		secret=result.secret,
		provisioning_uri=result.provisioning_uri,
		qr_code_base64=result.qr_code_base64,
		backup_codes=result.backup_codes,
	)


@router.post("/verify-setup", response_model=schema.VerifyResponse)
async def verify_setup(
	request: schema.CodeRequest,
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.VerifyResponse:
	"""Confirm enrollment with a code from the authenticator app."""
	verified = await service.confirm_enrollment(user_id, request.code)
	return schema.VerifyResponse(verified=verified)


@router.post("/verify", response_model=schema.VerifyResponse)
async def verify_totp(
	request: schema.CodeRequest,
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.VerifyResponse:
	"""Verify an authenticator code."""
	verified = await service.verify_totp(user_id, request.code)
	return schema.VerifyResponse(verified=verified)


@router.post("/challenge", response_model=schema.ChallengeResponse)
async def issue_challenge(
	request: schema.ChallengeRequest,
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.ChallengeResponse:
	"""Issue a step-up challenge; SMS and email codes go to the address on file."""
	challenge_id = await service.issue_challenge(user_id, request.method)
	return schema.ChallengeResponse(
		challenge_id=challenge_id,
		method=request.method,
		expires_in=service.challenge_ttl(request.method),
	)


@router.post("/challenge/verify", response_model=schema.VerifyResponse)
async def verify_challenge(
	request: schema.ChallengeVerifyRequest,
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.VerifyResponse:
	"""Verify a challenge code; the challenge is gone afterwards if it succeeded."""
	verified = await service.verify_challenge(request.challenge_id, request.code, user_id=user_id)
	return schema.VerifyResponse(verified=verified)


@router.post("/backup-codes/verify", response_model=schema.VerifyResponse)
async def verify_backup_code(
	request: schema.CodeRequest,
	user_id: UUID = Depends(get_current_user_id),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.VerifyResponse:
	"""Spend a backup code."""
	verified = await service.consume_backup_code(user_id, request.code)
	return schema.VerifyResponse(verified=verified)


@router.post("/backup-codes/regenerate", response_model=schema.BackupCodesResponse)
async def regenerate_backup_codes(
	user_id: UUID = Depends(get_current_user_id),
	step_up: StepUpResult = Depends(require_two_factor(TwoFactorOperation.BACKUP_CODES_REGENERATE)),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.BackupCodesResponse:
	"""Replace all backup codes (requires step-up)."""
	codes = await service.regenerate_backup_codes(user_id)
	return schema.BackupCodesResponse(codes=codes, remaining=len(codes))


@router.post("/disable", response_model=schema.MessageResponse)
async def disable(
	user_id: UUID = Depends(get_current_user_id),
	step_up: StepUpResult = Depends(require_two_factor(TwoFactorOperation.TWO_FACTOR_DISABLE)),
	service: TwoFactorService = Depends(get_two_factor_service),
) -> schema.MessageResponse:
	"""Disable 2FA (requires step-up)."""
	await service.disable(user_id)
	return schema.MessageResponse(message="Two-factor authentication disabled")
