# (c) Copyright Datacraft, 2026
"""Ephemeral key-value store used for all transient 2FA state."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, runtime_checkable
from uuid import UUID, uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from twofactor.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


@runtime_checkable
class EphemeralStore(Protocol):
	"""TTL-capable key-value store.

	Eviction must happen no later than the TTL; explicit ``delete`` is used
	for early invalidation.
	"""

	async def get(self, key: str) -> bytes | None:
		...

	async def set(self, key: str, value: bytes, ttl: int) -> None:
		...

	async def delete(self, *keys: str) -> int:
		"""Delete keys, returning how many existed."""
		...

	async def compare_and_swap(
		self,
		key: str,
		expected: bytes | None,
		new: bytes | None,
		ttl: int | None = None,
	) -> bool:
		"""Atomically replace ``expected`` with ``new``.

		``expected=None`` requires the key to be absent, ``new=None`` deletes
		it. Without ``ttl`` the remaining TTL of the key is kept.
		"""
		...


# KEYS[1] key; ARGV: expect mode, expected, op, new value, ttl in ms
_CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == 'absent' then
	if current then
		return 0
	end
elseif current ~= ARGV[2] then
	return 0
end
if ARGV[3] == 'delete' then
	redis.call('DEL', KEYS[1])
	return 1
end
local ttl = tonumber(ARGV[5])
if ttl <= 0 then
	ttl = redis.call('PTTL', KEYS[1])
end
if ttl > 0 then
	redis.call('SET', KEYS[1], ARGV[4], 'PX', ttl)
else
	redis.call('SET', KEYS[1], ARGV[4])
end
return 1
"""


class RedisEphemeralStore:
	"""Redis implementation; compare-and-swap runs as a Lua script."""

	def __init__(self, redis_client: Redis, namespace: str = "auth") -> None:
		self._redis = redis_client
		self._namespace = namespace
		self._cas = redis_client.register_script(_CAS_SCRIPT)

	def _key(self, key: str) -> str:
		return f"{self._namespace}:{key}"

	async def get(self, key: str) -> bytes | None:
		try:
			return await self._redis.get(self._key(key))
		except RedisError as e:
			raise StoreUnavailableError(f"Redis get failed for key {key}") from e

	async def set(self, key: str, value: bytes, ttl: int) -> None:
		try:
			await self._redis.set(self._key(key), value, ex=ttl)
		except RedisError as e:
			raise StoreUnavailableError(f"Redis set failed for key {key}") from e

	async def delete(self, *keys: str) -> int:
		if not keys:
			return 0
		try:
			return await self._redis.delete(*(self._key(k) for k in keys))
		except RedisError as e:
			raise StoreUnavailableError(f"Redis delete failed for keys {keys}") from e

	async def compare_and_swap(
		self,
		key: str,
		expected: bytes | None,
		new: bytes | None,
		ttl: int | None = None,
	) -> bool:
		args = [
			"absent" if expected is None else "equals",
			expected or b"",
			"delete" if new is None else "set",
			new or b"",
			(ttl or 0) * 1000,
		]
		try:
			result = await self._cas(keys=[self._key(key)], args=args)
		except RedisError as e:
			raise StoreUnavailableError(f"Redis compare-and-swap failed for key {key}") from e
		return result == 1


class InMemoryEphemeralStore:
	"""In-process store for development and tests.

	Not shared between processes. Every method completes without awaiting,
	so each call is atomic within a single event loop.
	"""

	def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
		self._clock = clock
		self._entries: dict[str, tuple[bytes, float | None]] = {}

	def _live(self, key: str) -> tuple[bytes, float | None] | None:
		entry = self._entries.get(key)
		if entry is None:
			return None
		_, expires_at = entry
		if expires_at is not None and self._clock() >= expires_at:
			del self._entries[key]
			return None
		return entry

	def remaining_ttl(self, key: str) -> float | None:
		entry = self._live(key)
		if entry is None or entry[1] is None:
			return None
		return entry[1] - self._clock()

	async def get(self, key: str) -> bytes | None:
		entry = self._live(key)
		return entry[0] if entry else None

	async def set(self, key: str, value: bytes, ttl: int) -> None:
		self._entries[key] = (value, self._clock() + ttl)

	async def delete(self, *keys: str) -> int:
		removed = 0
		for key in keys:
			if self._live(key) is not None:
				del self._entries[key]
				removed += 1
		return removed

	async def compare_and_swap(
		self,
		key: str,
		expected: bytes | None,
		new: bytes | None,
		ttl: int | None = None,
	) -> bool:
		entry = self._live(key)
		current = entry[0] if entry else None
		if current != expected:
			return False

		if new is None:
			self._entries.pop(key, None)
		elif ttl:
			self._entries[key] = (new, self._clock() + ttl)
		else:
			self._entries[key] = (new, entry[1] if entry else None)
		return True


def build_store(redis_url: str | None) -> EphemeralStore:
	"""Select the store once at startup."""
	if redis_url:
		return RedisEphemeralStore(Redis.from_url(redis_url))

	logger.warning("No redis_url configured, using in-process 2FA store")
	return InMemoryEphemeralStore()


def enabled_cache_key(user_id: UUID) -> str:
	return f"2fa:enabled:{user_id}"


def enabled_generation_key(user_id: UUID) -> str:
	return f"2fa:enabled:gen:{user_id}"


class EnabledStatusCache:
	"""Short-lived cache of ``TwoFactorConfig.enabled`` per user.

	Entries are stamped with the user's current generation. ``invalidate``
	moves the generation on, so an entry filled from a database read that
	started before the invalidation is never served.
	"""

	def __init__(self, store: EphemeralStore, ttl: int = 3600) -> None:
		self.store = store
		self.ttl = ttl

	async def generation(self, user_id: UUID) -> bytes:
		"""Current generation token; read it before loading the value to cache."""
		key = enabled_generation_key(user_id)
		while True:
			current = await self.store.get(key)
			if current is not None:
				return current
			token = uuid4().hex.encode()
			if await self.store.compare_and_swap(key, None, token, ttl=self.ttl):
				return token

	async def get(self, user_id: UUID) -> bool | None:
		cached = await self.store.get(enabled_cache_key(user_id))
		if cached is None:
			return None
		generation, _, flag = cached.rpartition(b":")
		if generation != await self.store.get(enabled_generation_key(user_id)):
			return None
		logger.debug(f"2FA status cache hit for user {user_id}")
		return flag == b"1"

	async def put(self, user_id: UUID, enabled: bool, generation: bytes) -> None:
		value = generation + (b":1" if enabled else b":0")
		await self.store.set(enabled_cache_key(user_id), value, self.ttl)

	async def invalidate(self, user_id: UUID) -> None:
		await self.store.set(enabled_generation_key(user_id), uuid4().hex.encode(), self.ttl)
		await self.store.delete(enabled_cache_key(user_id))
