# (c) Copyright Datacraft, 2026
"""Two-factor authentication errors.

Verification failures (`VerificationError` subclasses) never leave the
public verification API; they are collapsed to ``False`` there. Storage and
codec failures propagate so callers fail closed.
"""


class TwoFactorError(Exception):
	"""Base class for two-factor errors."""


class VerificationError(TwoFactorError):
	"""A submitted code was rejected."""


class NotFoundError(VerificationError):
	"""No configuration or challenge exists."""


class ExpiredError(VerificationError):
	"""The challenge outlived its expiry time."""


class AttemptsExhaustedError(VerificationError):
	"""The challenge used up its verification attempts."""


class InvalidCodeError(VerificationError):
	"""The code did not match."""


class UserNotFoundError(NotFoundError):
	"""The user, or the contact detail a challenge needs, is missing."""


class InvalidStateError(TwoFactorError):
	"""The enrollment is not in a state that allows the operation."""


class EncodingError(TwoFactorError):
	"""Stored ciphertext or payload could not be decoded."""


class StoreUnavailableError(TwoFactorError):
	"""The durable or ephemeral store failed."""
