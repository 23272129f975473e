# (c) Copyright Datacraft, 2026
"""Database module for the two-factor service."""
from .orm import User, TwoFactorConfig, BackupCode
from .base import Base
from .repository import TwoFactorConfigRepository

__all__ = [
	'Base',
	'User',
	'TwoFactorConfig',
	'BackupCode',
	'TwoFactorConfigRepository',
]
