# (c) Copyright Datacraft, 2026
"""Durable two-factor models."""
import uuid
from datetime import datetime, timezone
from typing import List
from uuid import UUID

from sqlalchemy import (
	String, ForeignKey, UniqueConstraint, Boolean, Integer, Text, DateTime, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from twofactor.schema import MFAStatus

from .base import Base


def utc_now() -> datetime:
	return datetime.now(timezone.utc)


class User(Base):
	"""Account record owned by the surrounding system; read-only here."""

	__tablename__ = "users"

	id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
	email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
	phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

	two_factor: Mapped["TwoFactorConfig | None"] = relationship(
		"TwoFactorConfig", back_populates="user", uselist=False
	)


class TwoFactorConfig(Base):
	"""One row per user holding the encrypted TOTP secret and lifecycle state."""

	__tablename__ = "two_factor_configs"

	user_id: Mapped[UUID] = mapped_column(
		ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
	)
	status: Mapped[str] = mapped_column(
		String(20), nullable=False, default=MFAStatus.NOT_CONFIGURED.value
	)
	secret_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)
	enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
	created_at: Mapped[datetime] = mapped_column(
		DateTime(timezone=True), default=utc_now
	)
	enabled_at: Mapped[datetime | None] = mapped_column(
		DateTime(timezone=True), nullable=True
	)
	disabled_at: Mapped[datetime | None] = mapped_column(
		DateTime(timezone=True), nullable=True
	)
	last_used_at: Mapped[datetime | None] = mapped_column(
		DateTime(timezone=True), nullable=True
	)

	user: Mapped["User"] = relationship("User", back_populates="two_factor")
	backup_codes: Mapped[List["BackupCode"]] = relationship(
		"BackupCode",
		back_populates="config",
		cascade="all, delete-orphan",
		order_by="BackupCode.position",
	)


class BackupCode(Base):
	"""Hash of a single-use recovery code."""

	__tablename__ = "two_factor_backup_codes"
	__table_args__ = (
		UniqueConstraint("user_id", "code_hash", name="uq_backup_code_user_hash"),
	)

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	user_id: Mapped[UUID] = mapped_column(
		ForeignKey("two_factor_configs.user_id", ondelete="CASCADE"),
		nullable=False,
		index=True,
	)
	position: Mapped[int] = mapped_column(Integer, nullable=False)
	code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

	config: Mapped["TwoFactorConfig"] = relationship(
		"TwoFactorConfig", back_populates="backup_codes"
	)
