# (c) Copyright Datacraft, 2026
"""Encryption of TOTP secrets and hashing of backup codes at rest."""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from twofactor.exceptions import EncodingError

logger = logging.getLogger(__name__)


class SecretVault:
	"""Encrypts the durable TOTP secret with Fernet.

	Fernet is AES-128-CBC with an HMAC-SHA256 tag over version, timestamp,
	IV and ciphertext, so tampered or truncated tokens fail to decrypt
	instead of yielding garbage.
	"""

	def __init__(self, key: str, salt: str, iterations: int = 100_000):
		if not key:
			raise ValueError("Vault encryption key must not be empty")
		self._fernet = self._derive_fernet(key, salt, iterations)

	@staticmethod
	def _derive_fernet(key: str, salt: str, iterations: int) -> Fernet:
		kdf = PBKDF2HMAC(
			algorithm=hashes.SHA256(),
			length=32,
			salt=salt.encode("utf-8"),
			iterations=iterations,
		)
		return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode("utf-8"))))

	def encrypt_secret(self, secret: str) -> str:
		"""Encrypt a hex secret; the token embeds its own random IV."""
		return self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")

	def decrypt_secret(self, ciphertext: str) -> str:
		"""Decrypt a stored secret.

		Raises:
			EncodingError: the token is corrupt, truncated or was encrypted
				under another key
		"""
		try:
			return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
		except (InvalidToken, UnicodeError) as e:
			logger.error("Stored 2FA secret failed authentication")
			raise EncodingError("Stored 2FA secret could not be decrypted") from e


def normalize_backup_code(code: str) -> str:
	return code.replace("-", "").replace(" ", "").lower()


def hash_backup_code(code: str) -> str:
	"""Hash a backup code for secure storage.

	Args:
		code: Plain text backup code

	Returns:
		SHA-256 hex digest of the normalized code
	"""
	return hashlib.sha256(normalize_backup_code(code).encode("utf-8")).hexdigest()
