# (c) Copyright Datacraft, 2026
"""2FA enrollment lifecycle.

    NOT_CONFIGURED --start--> PENDING --confirm--> ENABLED --disable--> DISABLED
    DISABLED --start--> PENDING
    PENDING --disable--> DISABLED   (abandoned setup)
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from twofactor.db.orm import TwoFactorConfig
from twofactor.db.repository import TwoFactorConfigRepository
from twofactor.exceptions import InvalidStateError, UserNotFoundError
from twofactor.schema import MFAStatus

from .backup import BackupCodeManager
from .replay import TOTPReplayGuard
from .store import EnabledStatusCache
from .totp import TOTPManager
from .vault import SecretVault

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentStart:
	"""Shown to the user once; none of it can be read back later."""
	secret: str
	provisioning_uri: str
	qr_code_base64: str
	backup_codes: list[str]


def status_of(config: TwoFactorConfig | None) -> MFAStatus:
	if config is None:
		return MFAStatus.NOT_CONFIGURED
	return MFAStatus(config.status)


class EnrollmentService:
	"""Drives a user's `TwoFactorConfig` through its states."""

	def __init__(
		self,
		repository: TwoFactorConfigRepository,
		totp_manager: TOTPManager,
		vault: SecretVault,
		backup_manager: BackupCodeManager,
		status_cache: EnabledStatusCache,
		replay_guard: TOTPReplayGuard,
		clock: Callable[[], float] = time.time,
	):
		self.repository = repository
		self.totp_manager = totp_manager
		self.vault = vault
		self.backup_manager = backup_manager
		self.status_cache = status_cache
		self.replay_guard = replay_guard
		self.clock = clock

	def _now(self) -> datetime:
		return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

	def status(self, user_id: UUID) -> MFAStatus:
		return status_of(self.repository.get(user_id))

	async def start(self, user_id: UUID) -> EnrollmentStart:
		"""Generate a secret and backup codes and park them as pending.

		Raises:
			InvalidStateError: 2FA is pending or enabled
			UserNotFoundError: unknown user
		"""
		user = self.repository.get_user(user_id)
		if user is None:
			raise UserNotFoundError(f"User {user_id} not found")

		current = self.status(user_id)
		allowed = (MFAStatus.NOT_CONFIGURED, MFAStatus.DISABLED)
		if current not in allowed:
			raise InvalidStateError(f"Cannot start enrollment while {current.value}")

		setup = self.totp_manager.setup_totp(user.email)
		plain_codes, hashed_codes = self.backup_manager.generate_codes()

		saved = self.repository.save_pending(
			user_id,
			self.vault.encrypt_secret(setup.secret),
			hashed_codes,
			self._now(),
			allowed_from=allowed,
		)
		if not saved:
			raise InvalidStateError("Enrollment changed concurrently")

		await self.status_cache.invalidate(user_id)
		await self.replay_guard.reset(user_id)

		logger.info(f"2FA enrollment started for user {user_id}")

		return EnrollmentStart(
			secret=setup.secret,
			provisioning_uri=setup.provisioning_uri,
			qr_code_base64=setup.qr_code_base64,
			backup_codes=plain_codes,
		)

	async def confirm(self, user_id: UUID, code: str) -> bool:
		"""Prove possession of the secret and enable 2FA.

		Returns:
			False for a wrong code; the enrollment stays pending

		Raises:
			InvalidStateError: not pending (never started, already enabled)
		"""
		config = self.repository.get(user_id)
		current = status_of(config)
		if current is not MFAStatus.PENDING:
			raise InvalidStateError(f"Cannot confirm enrollment while {current.value}")

		secret = self.vault.decrypt_secret(config.secret_ciphertext)
		step = self.totp_manager.match_step(secret, code, now=self.clock())
		if step is None or not await self.replay_guard.claim(user_id, step):
			logger.warning(f"Invalid 2FA code during enable attempt for user {user_id}")
			return False

		await self.status_cache.invalidate(user_id)
		if not self.repository.mark_enabled(user_id, self._now()):
			raise InvalidStateError("Enrollment is no longer pending")
		await self.status_cache.invalidate(user_id)

		logger.info(f"2FA enabled for user {user_id}")
		return True

	async def disable(self, user_id: UUID) -> None:
		"""Clear secret, backup codes and the enabled flag.

		Raises:
			InvalidStateError: nothing to disable
		"""
		current = self.status(user_id)
		allowed = (MFAStatus.ENABLED, MFAStatus.PENDING)
		if current not in allowed:
			raise InvalidStateError(f"Cannot disable 2FA while {current.value}")

		await self.status_cache.invalidate(user_id)
		if not self.repository.mark_disabled(user_id, self._now(), from_statuses=allowed):
			raise InvalidStateError("Enrollment changed concurrently")
		await self.status_cache.invalidate(user_id)
		await self.replay_guard.reset(user_id)

		logger.info(f"2FA disabled for user {user_id}")

	async def regenerate_backup_codes(self, user_id: UUID) -> list[str]:
		"""Issue a fresh set of backup codes, invalidating the old ones."""
		current = self.status(user_id)
		if current is not MFAStatus.ENABLED:
			raise InvalidStateError(f"Cannot regenerate backup codes while {current.value}")

		return self.backup_manager.regenerate(self.repository, user_id)
