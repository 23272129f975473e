# (c) Copyright Datacraft, 2026
"""Multi-Factor Authentication module."""

from .totp import TOTPManager, TOTPSetup
from .vault import SecretVault, hash_backup_code
from .backup import BackupCodeManager, generate_backup_codes
from .store import EphemeralStore, InMemoryEphemeralStore, RedisEphemeralStore
from .delivery import Delivery
from .challenge import ChallengeCoordinator
from .enrollment import EnrollmentService
from .service import TwoFactorMethods, TwoFactorService, TwoFactorStatus

__all__ = [
	"TOTPManager",
	"TOTPSetup",
	"SecretVault",
	"hash_backup_code",
	"BackupCodeManager",
	"generate_backup_codes",
	"EphemeralStore",
	"InMemoryEphemeralStore",
	"RedisEphemeralStore",
	"Delivery",
	"ChallengeCoordinator",
	"EnrollmentService",
	"TwoFactorService",
	"TwoFactorStatus",
	"TwoFactorMethods",
]
