# (c) Copyright Datacraft, 2026
"""MFA service for managing multi-factor authentication."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from twofactor.config import Settings
from twofactor.db.repository import TwoFactorConfigRepository
from twofactor.exceptions import InvalidStateError, UserNotFoundError
from twofactor.schema import MFAMethod, MFAStatus

from .backup import BackupCodeManager
from .challenge import ChallengeCoordinator
from .delivery import Delivery
from .enrollment import EnrollmentService, EnrollmentStart, status_of
from .replay import TOTPReplayGuard
from .store import EnabledStatusCache, EphemeralStore
from .totp import TOTPManager
from .vault import SecretVault

logger = logging.getLogger(__name__)


@dataclass
class TwoFactorStatus:
	"""2FA summary for one user."""
	status: MFAStatus
	enabled: bool
	backup_codes_remaining: int | None = None


@dataclass
class TwoFactorMethods:
	"""Which second factors one user can answer a challenge with."""
	totp: bool
	sms: bool
	email: bool
	backup_codes: bool


class TwoFactorService:
	"""Entry point used by the rest of the application.

	Enrollment management raises distinct errors; every verification
	method answers with a plain boolean.
	"""

	def __init__(
		self,
		db: Session,
		store: EphemeralStore,
		delivery: Delivery,
		settings: Settings,
		vault: SecretVault | None = None,
		clock: Callable[[], float] = time.time,
	):
		self.settings = settings
		self.clock = clock
		self.repository = TwoFactorConfigRepository(db)
		self.totp_manager = TOTPManager(
			issuer_name=settings.mfa_issuer,
			secret_length=settings.totp_secret_length,
			valid_window=settings.totp_valid_window,
		)
		self.vault = vault or SecretVault(settings.encryption_key, settings.encryption_salt)
		self.backup_manager = BackupCodeManager(
			code_count=settings.mfa_backup_codes_count,
			code_length=settings.mfa_backup_code_length,
		)
		self.status_cache = EnabledStatusCache(store, ttl=settings.status_cache_ttl)
		self.replay_guard = TOTPReplayGuard(
			store,
			interval=self.totp_manager.interval,
			valid_window=settings.totp_valid_window,
		)
		self.enrollment = EnrollmentService(
			self.repository,
			self.totp_manager,
			self.vault,
			self.backup_manager,
			self.status_cache,
			self.replay_guard,
			clock=clock,
		)
		self.challenges = ChallengeCoordinator(
			store,
			delivery,
			self.repository,
			self.totp_manager,
			self.vault,
			self.replay_guard,
			self.status_cache,
			ttls={
				MFAMethod.SMS: settings.challenge_sms_ttl,
				MFAMethod.EMAIL: settings.challenge_email_ttl,
				MFAMethod.TOTP: settings.challenge_totp_ttl,
			},
			max_attempts=settings.challenge_max_attempts,
			delivery_timeout=settings.delivery_timeout,
			clock=clock,
		)

	# Enrollment API

	async def start_enrollment(self, user_id: UUID) -> EnrollmentStart:
		return await self.enrollment.start(user_id)

	async def confirm_enrollment(self, user_id: UUID, code: str) -> bool:
		return await self.enrollment.confirm(user_id, code)

	async def disable(self, user_id: UUID) -> None:
		await self.enrollment.disable(user_id)

	async def regenerate_backup_codes(self, user_id: UUID) -> list[str]:
		return await self.enrollment.regenerate_backup_codes(user_id)

	async def is_enabled(self, user_id: UUID) -> bool:
		return await self.challenges.is_enabled(user_id)

	def get_status(self, user_id: UUID) -> TwoFactorStatus:
		config = self.repository.get(user_id)
		status = status_of(config)
		enabled = status is MFAStatus.ENABLED
		return TwoFactorStatus(
			status=status,
			enabled=enabled,
			backup_codes_remaining=(
				self.repository.count_backup_codes(user_id) if enabled else None
			),
		)

	async def available_methods(self, user_id: UUID) -> TwoFactorMethods:
		"""Authenticator and backup codes need 2FA enabled; SMS needs a phone on file.

		Raises:
			UserNotFoundError: unknown user
		"""
		user = self.repository.get_user(user_id)
		if user is None:
			raise UserNotFoundError(f"User {user_id} not found")

		enabled = await self.is_enabled(user_id)
		return TwoFactorMethods(
			totp=enabled,
			sms=bool(user.phone_number),
			email=bool(user.email),
			backup_codes=enabled,
		)

	# Step-up API

	async def issue_challenge(self, user_id: UUID, method: MFAMethod) -> str:
		"""Issue a challenge, delivering to the address on file.

		Raises:
			UserNotFoundError: unknown user or no address for the method
			InvalidStateError: TOTP requested but 2FA is not enabled
		"""
		method = MFAMethod(method)
		user = self.repository.get_user(user_id)
		if user is None:
			raise UserNotFoundError(f"User {user_id} not found")

		if method is MFAMethod.TOTP and not await self.is_enabled(user_id):
			raise InvalidStateError("2FA is not enabled")

		address = None
		if method is MFAMethod.SMS:
			address = user.phone_number
		elif method is MFAMethod.EMAIL:
			address = user.email

		return await self.challenges.issue(user_id, method, address)

	async def verify_challenge(
		self,
		challenge_id: str,
		code: str,
		user_id: UUID | None = None,
	) -> bool:
		return await self.challenges.verify(challenge_id, code, expected_user_id=user_id)

	def challenge_ttl(self, method: MFAMethod) -> int:
		return self.challenges.ttls[MFAMethod(method)]

	# Direct verification

	async def verify_totp(self, user_id: UUID, code: str) -> bool:
		"""Verify an authenticator code for an enabled user, once per step."""
		config = self.repository.get(user_id)
		if status_of(config) is not MFAStatus.ENABLED or not config.secret_ciphertext:
			return False

		secret = self.vault.decrypt_secret(config.secret_ciphertext)
		step = self.totp_manager.match_step(secret, code, now=self.clock())
		if step is None or not await self.replay_guard.claim(user_id, step):
			logger.warning(f"Invalid TOTP code for user {user_id}")
			return False

		self.repository.touch_last_used(user_id, datetime.fromtimestamp(self.clock(), tz=timezone.utc))
		return True

	async def consume_backup_code(self, user_id: UUID, code: str) -> bool:
		"""Spend a backup code for an enabled user."""
		config = self.repository.get(user_id)
		if status_of(config) is not MFAStatus.ENABLED:
			return False

		_, consumed = self.backup_manager.consume(self.repository, user_id, code)
		return consumed
