# (c) Copyright Datacraft, 2026
"""Single use of TOTP codes inside the verification window."""
import logging
from uuid import UUID

from .store import EphemeralStore

logger = logging.getLogger(__name__)


class TOTPReplayGuard:
	"""Remembers the last accepted time step per user.

	A code is accepted only when its step is later than the last one
	accepted for that user; the record outlives the verification window.
	"""

	def __init__(self, store: EphemeralStore, interval: int = 30, valid_window: int = 1):
		self.store = store
		self.ttl = interval * (2 * valid_window + 2)

	@staticmethod
	def _key(user_id: UUID) -> str:
		return f"2fa:totp:last:{user_id}"

	async def claim(self, user_id: UUID, step: int) -> bool:
		"""Record ``step`` as used; False when it (or a later one) already was."""
		key = self._key(user_id)
		while True:
			raw = await self.store.get(key)
			if raw is not None and int(raw) >= step:
				logger.warning(f"Replayed TOTP code rejected for user {user_id}")
				return False
			if await self.store.compare_and_swap(key, raw, str(step).encode(), ttl=self.ttl):
				return True

	async def reset(self, user_id: UUID) -> None:
		await self.store.delete(self._key(user_id))
