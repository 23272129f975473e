# (c) Copyright Datacraft, 2026
"""Persistence of two-factor configuration.

Every state change is a single conditional statement so that concurrent
requests cannot both win: backup codes are consumed by a ``DELETE`` whose
rowcount decides the winner, and lifecycle transitions are ``UPDATE``
statements guarded by the expected current status.
"""
import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, insert, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from twofactor.exceptions import StoreUnavailableError
from twofactor.schema import MFAStatus

from .orm import BackupCode, TwoFactorConfig, User

logger = logging.getLogger(__name__)


class TwoFactorConfigRepository:
	"""Reads and writes `TwoFactorConfig` rows keyed by user id."""

	def __init__(self, db: Session):
		self.db = db

	def get_user(self, user_id: UUID) -> User | None:
		try:
			return self.db.get(User, user_id)
		except SQLAlchemyError as e:
			raise StoreUnavailableError("Failed to load user") from e

	def get(self, user_id: UUID) -> TwoFactorConfig | None:
		stmt = (
			select(TwoFactorConfig)
			.where(TwoFactorConfig.user_id == user_id)
			.execution_options(populate_existing=True)
		)
		try:
			return self.db.scalar(stmt)
		except SQLAlchemyError as e:
			raise StoreUnavailableError("Failed to load 2FA config") from e

	def save_pending(
		self,
		user_id: UUID,
		secret_ciphertext: str,
		code_hashes: list[str],
		now: datetime,
		allowed_from: tuple[MFAStatus, ...],
	) -> bool:
		"""Store a fresh secret and backup codes in the pending state.

		Returns False when the row changed state since the caller looked
		at it.
		"""
		try:
			config = self.get(user_id)
			if config is None:
				config = TwoFactorConfig(
					user_id=user_id,
					status=MFAStatus.PENDING.value,
					secret_ciphertext=secret_ciphertext,
					enabled=False,
					created_at=now,
				)
				self.db.add(config)
				self.db.flush()
			else:
				result = self.db.execute(
					update(TwoFactorConfig)
					.where(
						TwoFactorConfig.user_id == user_id,
						TwoFactorConfig.status.in_([s.value for s in allowed_from]),
					)
					.values(
						status=MFAStatus.PENDING.value,
						secret_ciphertext=secret_ciphertext,
						enabled=False,
						created_at=now,
						enabled_at=None,
						disabled_at=None,
					)
					.execution_options(synchronize_session=False)
				)
				if result.rowcount != 1:
					self.db.rollback()
					return False

			self._write_backup_codes(user_id, code_hashes)
			self.db.commit()
		except IntegrityError:
			# Another request inserted the first row for this user
			self.db.rollback()
			return False
		except SQLAlchemyError as e:
			self.db.rollback()
			raise StoreUnavailableError("Failed to save pending 2FA config") from e

		return True

	def mark_enabled(self, user_id: UUID, now: datetime) -> bool:
		"""Transition pending -> enabled; False if the row was not pending."""
		return self._transition(
			user_id,
			from_statuses=(MFAStatus.PENDING,),
			values={
				"status": MFAStatus.ENABLED.value,
				"enabled": True,
				"enabled_at": now,
			},
		)

	def mark_disabled(
		self,
		user_id: UUID,
		now: datetime,
		from_statuses: tuple[MFAStatus, ...],
	) -> bool:
		"""Clear the secret and backup codes and mark the config disabled."""
		try:
			result = self.db.execute(
				update(TwoFactorConfig)
				.where(
					TwoFactorConfig.user_id == user_id,
					TwoFactorConfig.status.in_([s.value for s in from_statuses]),
				)
				.values(
					status=MFAStatus.DISABLED.value,
					enabled=False,
					secret_ciphertext=None,
					enabled_at=None,
					disabled_at=now,
				)
				.execution_options(synchronize_session=False)
			)
			if result.rowcount != 1:
				self.db.rollback()
				return False

			self.db.execute(
				delete(BackupCode)
				.where(BackupCode.user_id == user_id)
				.execution_options(synchronize_session=False)
			)
			self.db.commit()
		except SQLAlchemyError as e:
			self.db.rollback()
			raise StoreUnavailableError("Failed to disable 2FA config") from e

		return True

	def consume_backup_code(self, user_id: UUID, code_hash: str, now: datetime) -> bool:
		"""Delete a matching backup code hash; True only for the request that removed it."""
		try:
			result = self.db.execute(
				delete(BackupCode)
				.where(
					BackupCode.user_id == user_id,
					BackupCode.code_hash == code_hash,
				)
				.execution_options(synchronize_session=False)
			)
			if result.rowcount != 1:
				self.db.rollback()
				return False

			self.db.execute(
				update(TwoFactorConfig)
				.where(TwoFactorConfig.user_id == user_id)
				.values(last_used_at=now)
				.execution_options(synchronize_session=False)
			)
			self.db.commit()
		except SQLAlchemyError as e:
			self.db.rollback()
			raise StoreUnavailableError("Failed to consume backup code") from e

		return True

	def replace_backup_codes(self, user_id: UUID, code_hashes: list[str]) -> None:
		try:
			self._write_backup_codes(user_id, code_hashes)
			self.db.commit()
		except SQLAlchemyError as e:
			self.db.rollback()
			raise StoreUnavailableError("Failed to replace backup codes") from e

	def count_backup_codes(self, user_id: UUID) -> int:
		stmt = select(func.count()).select_from(BackupCode).where(
			BackupCode.user_id == user_id
		)
		try:
			return self.db.scalar(stmt) or 0
		except SQLAlchemyError as e:
			raise StoreUnavailableError("Failed to count backup codes") from e

	def touch_last_used(self, user_id: UUID, now: datetime) -> None:
		try:
			self.db.execute(
				update(TwoFactorConfig)
				.where(TwoFactorConfig.user_id == user_id)
				.values(last_used_at=now)
				.execution_options(synchronize_session=False)
			)
			self.db.commit()
		except SQLAlchemyError as e:
			self.db.rollback()
			raise StoreUnavailableError("Failed to update 2FA config") from e

	def _transition(
		self,
		user_id: UUID,
		from_statuses: tuple[MFAStatus, ...],
		values: dict,
	) -> bool:
		try:
			result = self.db.execute(
				update(TwoFactorConfig)
				.where(
					TwoFactorConfig.user_id == user_id,
					TwoFactorConfig.status.in_([s.value for s in from_statuses]),
				)
				.values(**values)
				.execution_options(synchronize_session=False)
			)
			if result.rowcount != 1:
				self.db.rollback()
				return False
			self.db.commit()
		except SQLAlchemyError as e:
			self.db.rollback()
			raise StoreUnavailableError("Failed to update 2FA config") from e

		return True

	def _write_backup_codes(self, user_id: UUID, code_hashes: list[str]) -> None:
		# Caller commits
		self.db.execute(
			delete(BackupCode)
			.where(BackupCode.user_id == user_id)
			.execution_options(synchronize_session=False)
		)
		if not code_hashes:
			return
		self.db.execute(
			insert(BackupCode),
			[
				{"user_id": user_id, "position": position, "code_hash": code_hash}
				for position, code_hash in enumerate(code_hashes)
			],
		)
