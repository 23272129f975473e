# (c) Copyright Datacraft, 2026
"""Out-of-band challenge issuance and verification.

A challenge is two sibling entries in the ephemeral store sharing one TTL:

- ``2fa:challenge:{id}`` metadata (user, method, expiry, used flag)
- ``2fa:code:{id}`` the code and the failed attempt counter

Verification runs a compare-and-swap loop over the code entry so attempt
counting is never lost and a code is accepted at most once. Every failure
mode collapses to ``False`` for the caller.
"""
import asyncio
import logging
import secrets
import time
import uuid
from typing import Callable
from uuid import UUID

from pydantic import BaseModel, ValidationError

from twofactor.db.repository import TwoFactorConfigRepository
from twofactor.exceptions import (
	AttemptsExhaustedError,
	EncodingError,
	ExpiredError,
	InvalidCodeError,
	NotFoundError,
	UserNotFoundError,
	VerificationError,
)
from twofactor.schema import MFAMethod

from .delivery import Delivery, mask_address
from .replay import TOTPReplayGuard
from .store import EnabledStatusCache, EphemeralStore
from .totp import TOTPManager
from .vault import SecretVault

logger = logging.getLogger(__name__)

CODE_DIGITS = 6

SMS_MESSAGE = "Your verification code is: {code}"
EMAIL_SUBJECT = "Two-Factor Authentication Code"
EMAIL_BODY = """
<h2>Two-Factor Authentication Code</h2>
<p>Your verification code is: <strong>{code}</strong></p>
<p>This code will expire in {minutes} minutes.</p>
<p>If you didn't request this code, please ignore this email.</p>
"""


class Challenge(BaseModel):
	"""Challenge metadata."""
	challenge_id: str
	user_id: UUID
	method: MFAMethod
	created_at: float
	expires_at: float
	used: bool = False


class ChallengeSecret(BaseModel):
	"""Code sent out of band plus failed attempts so far; no code for TOTP."""
	code: str | None = None
	attempts: int = 0


def challenge_key(challenge_id: str) -> str:
	return f"2fa:challenge:{challenge_id}"


def code_key(challenge_id: str) -> str:
	return f"2fa:code:{challenge_id}"


def generate_code(digits: int = CODE_DIGITS) -> str:
	"""Uniformly random numeric code."""
	return str(secrets.randbelow(10 ** digits)).zfill(digits)


class ChallengeCoordinator:
	"""Issues and verifies step-up challenges."""

	def __init__(
		self,
		store: EphemeralStore,
		delivery: Delivery,
		repository: TwoFactorConfigRepository,
		totp_manager: TOTPManager,
		vault: SecretVault,
		replay_guard: TOTPReplayGuard,
		status_cache: EnabledStatusCache,
		ttls: dict[MFAMethod, int] | None = None,
		max_attempts: int = 3,
		delivery_timeout: float = 10.0,
		clock: Callable[[], float] = time.time,
	):
		self.store = store
		self.delivery = delivery
		self.repository = repository
		self.totp_manager = totp_manager
		self.vault = vault
		self.replay_guard = replay_guard
		self.status_cache = status_cache
		self.ttls = ttls or {
			MFAMethod.SMS: 300,
			MFAMethod.EMAIL: 600,
			MFAMethod.TOTP: 300,
		}
		self.max_attempts = max_attempts
		self.delivery_timeout = delivery_timeout
		self.clock = clock

	async def issue(
		self,
		user_id: UUID,
		method: MFAMethod,
		delivery_address: str | None = None,
	) -> str:
		"""Create a challenge and hand its code to the delivery provider.

		The challenge is stored before delivery is attempted; a delivery
		failure or timeout is logged and does not undo issuance.

		Returns:
			The challenge id. The code itself is never returned.
		"""
		method = MFAMethod(method)
		if method is not MFAMethod.TOTP and not delivery_address:
			raise UserNotFoundError(f"No {method.value} address on file for user {user_id}")

		ttl = self.ttls[method]
		now = self.clock()
		challenge = Challenge(
			challenge_id=str(uuid.uuid4()),
			user_id=user_id,
			method=method,
			created_at=now,
			expires_at=now + ttl,
		)
		code = None if method is MFAMethod.TOTP else generate_code()
		secret = ChallengeSecret(code=code)

		# Code entry first so live metadata always has its sibling
		await self.store.set(code_key(challenge.challenge_id), secret.model_dump_json().encode(), ttl)
		await self.store.set(challenge_key(challenge.challenge_id), challenge.model_dump_json().encode(), ttl)

		if code is not None:
			await self._deliver(method, delivery_address, code, ttl)

		logger.info(f"{method.value} challenge {challenge.challenge_id} issued for user {user_id}")
		return challenge.challenge_id

	async def verify(
		self,
		challenge_id: str,
		code: str,
		expected_user_id: UUID | None = None,
	) -> bool:
		"""Verify a submitted code; True at most once per challenge."""
		try:
			await self._verify(challenge_id, code, expected_user_id)
		except VerificationError as e:
			logger.warning(f"Challenge {challenge_id} rejected: {type(e).__name__}")
			return False

		logger.info(f"Challenge {challenge_id} verified")
		return True

	async def is_enabled(self, user_id: UUID) -> bool:
		"""Whether the user has 2FA enabled, cached for a short while."""
		cached = await self.status_cache.get(user_id)
		if cached is not None:
			return cached

		# Generation first: an invalidation after this point discards the fill
		generation = await self.status_cache.generation(user_id)
		config = self.repository.get(user_id)
		enabled = bool(config and config.enabled)
		await self.status_cache.put(user_id, enabled, generation)
		return enabled

	async def _verify(
		self,
		challenge_id: str,
		code: str,
		expected_user_id: UUID | None,
	) -> None:
		if not isinstance(code, str) or not isinstance(challenge_id, str):
			raise InvalidCodeError("Malformed submission")

		challenge = await self._load_challenge(challenge_id)
		if expected_user_id is not None and challenge.user_id != expected_user_id:
			raise NotFoundError("Challenge belongs to another user")

		key = code_key(challenge_id)
		while True:
			raw = await self.store.get(key)
			if raw is None:
				await self.store.delete(challenge_key(challenge_id))
				raise NotFoundError("Challenge code missing")
			secret = self._decode(ChallengeSecret, raw)

			if secret.attempts >= self.max_attempts:
				await self._purge(challenge_id)
				raise AttemptsExhaustedError("Too many attempts")

			step = self._match(challenge, secret, code)
			if step is not None:
				# Whoever deletes the unchanged entry first wins
				if not await self.store.compare_and_swap(key, raw, None):
					continue
				await self.store.delete(challenge_key(challenge_id))
				if challenge.method is MFAMethod.TOTP and not await self.replay_guard.claim(challenge.user_id, step):
					raise InvalidCodeError("TOTP code already used")
				return

			failed = secret.model_copy(update={"attempts": secret.attempts + 1})
			if await self.store.compare_and_swap(key, raw, failed.model_dump_json().encode()):
				raise InvalidCodeError(f"Wrong code, attempt {failed.attempts}")

	async def _load_challenge(self, challenge_id: str) -> Challenge:
		raw = await self.store.get(challenge_key(challenge_id))
		if raw is None:
			raise NotFoundError("Challenge not found")

		challenge = self._decode(Challenge, raw)
		if challenge.used:
			await self._purge(challenge_id)
			raise NotFoundError("Challenge already used")
		if self.clock() > challenge.expires_at:
			await self._purge(challenge_id)
			raise ExpiredError("Challenge expired")
		return challenge

	def _match(self, challenge: Challenge, secret: ChallengeSecret, code: str) -> int | None:
		"""Matched TOTP step, 0 for a matching out-of-band code, None otherwise."""
		if challenge.method is MFAMethod.TOTP:
			config = self.repository.get(challenge.user_id)
			if config is None or not config.enabled or not config.secret_ciphertext:
				return None
			totp_secret = self.vault.decrypt_secret(config.secret_ciphertext)
			return self.totp_manager.match_step(totp_secret, code, now=self.clock())

		if secret.code is None:
			return None
		if secrets.compare_digest(secret.code.encode(), code.strip().encode()):
			return 0
		return None

	async def _purge(self, challenge_id: str) -> None:
		await self.store.delete(challenge_key(challenge_id), code_key(challenge_id))

	@staticmethod
	def _decode(model: type[BaseModel], raw: bytes):
		try:
			return model.model_validate_json(raw)
		except ValidationError as e:
			raise EncodingError(f"Corrupt {model.__name__} entry") from e

	async def _deliver(self, method: MFAMethod, address: str, code: str, ttl: int) -> None:
		try:
			if method is MFAMethod.SMS:
				send = self.delivery.send_sms(address, SMS_MESSAGE.format(code=code))
			else:
				send = self.delivery.send_email(
					address,
					EMAIL_SUBJECT,
					EMAIL_BODY.format(code=code, minutes=ttl // 60),
				)
			await asyncio.wait_for(send, timeout=self.delivery_timeout)
		except asyncio.TimeoutError:
			logger.error(f"{method.value} delivery to {mask_address(address)} timed out")
		except Exception as e:  # noqa: BLE001
			logger.error(f"{method.value} delivery to {mask_address(address)} failed: {e}")
