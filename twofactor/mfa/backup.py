# (c) Copyright Datacraft, 2026
"""Backup codes for MFA recovery."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from twofactor.db.orm import TwoFactorConfig
from twofactor.db.repository import TwoFactorConfigRepository

from .vault import hash_backup_code

logger = logging.getLogger(__name__)


@dataclass
class BackupCode:
	"""A backup code."""
	code: str
	hash: str


def generate_backup_codes(count: int = 10, length: int = 8) -> list[BackupCode]:
	"""Generate backup codes for MFA recovery.

	Args:
		count: Number of codes to generate
		length: Characters per code

	Returns:
		List of BackupCode instances
	"""
	codes = []

	for _ in range(count):
		code = secrets.token_hex((length + 1) // 2)[:length]
		codes.append(BackupCode(code=code, hash=hash_backup_code(code)))

	return codes


class BackupCodeManager:
	"""Issues backup codes and spends them against the durable store."""

	def __init__(self, code_count: int = 10, code_length: int = 8):
		self.code_count = code_count
		self.code_length = code_length

	def generate_codes(self) -> tuple[list[str], list[str]]:
		"""Generate new backup codes.

		Returns:
			Tuple of (plain_codes, hashed_codes)
		"""
		codes = generate_backup_codes(count=self.code_count, length=self.code_length)
		return [c.code for c in codes], [c.hash for c in codes]

	def consume(
		self,
		repository: TwoFactorConfigRepository,
		user_id: UUID,
		code: str,
	) -> tuple[TwoFactorConfig | None, bool]:
		"""Spend a backup code.

		The hash is removed by a single conditional delete, so of two
		simultaneous submissions of the same code only one succeeds.

		Returns:
			Tuple of (config after the attempt, success)
		"""
		if not isinstance(code, str) or not code.strip():
			return repository.get(user_id), False

		consumed = repository.consume_backup_code(
			user_id,
			hash_backup_code(code),
			datetime.now(timezone.utc),
		)
		if consumed:
			remaining = repository.count_backup_codes(user_id)
			logger.warning(f"Backup code used for user {user_id}, {remaining} remaining")

		return repository.get(user_id), consumed

	def regenerate(
		self,
		repository: TwoFactorConfigRepository,
		user_id: UUID,
	) -> list[str]:
		"""Replace every stored code; previously issued codes stop working."""
		plain_codes, hashed_codes = self.generate_codes()
		repository.replace_backup_codes(user_id, hashed_codes)

		logger.info(f"Backup codes regenerated for user {user_id}")

		return plain_codes
