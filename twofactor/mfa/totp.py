# (c) Copyright Datacraft, 2026
"""TOTP (Time-based One-Time Password) implementation."""

import base64
import hashlib
import io
import logging
import secrets
import time
from dataclasses import dataclass

import pyotp
import qrcode

logger = logging.getLogger(__name__)


@dataclass
class TOTPSetup:
	"""TOTP setup data for enabling 2FA."""
	secret: str
	provisioning_uri: str
	qr_code_base64: str


class TOTPManager:
	"""Derives and verifies time-stepped codes.

	Secrets are raw bytes carried hex-encoded; authenticator apps receive
	the same bytes base32-encoded inside the provisioning URI.
	"""

	def __init__(
		self,
		issuer_name: str = "Marketplace",
		digits: int = 6,
		interval: int = 30,
		secret_length: int = 32,
		valid_window: int = 1,
	):
		"""Initialize TOTP manager.

		Args:
			issuer_name: Name shown in authenticator apps
			digits: Number of digits in OTP code
			interval: Time step length (seconds)
			secret_length: Raw secret length in bytes
			valid_window: Steps accepted before/after the current one
		"""
		self.issuer_name = issuer_name
		self.digits = digits
		self.interval = interval
		self.secret_length = secret_length
		self.valid_window = valid_window

	def generate_secret(self) -> str:
		"""Generate a new random TOTP secret.

		Returns:
			Hex-encoded secret string
		"""
		return secrets.token_hex(self.secret_length)

	def _hotp(self, secret: str) -> pyotp.HOTP:
		key = bytes.fromhex(secret)
		return pyotp.HOTP(
			base64.b32encode(key).decode("ascii").rstrip("="),
			digits=self.digits,
			digest=hashlib.sha1,
		)

	def time_step(self, unix_time: float) -> int:
		"""Step index the given unix time falls in."""
		return int(unix_time // self.interval)

	def compute_code(self, secret: str, time_step: int) -> str:
		"""Compute the code for a step index.

		HMAC-SHA1 over the 8-byte big-endian step, dynamic truncation to a
		31-bit integer, reduced modulo 10**digits and zero-padded.
		"""
		return self._hotp(secret).at(time_step)

	def match_step(
		self,
		secret: str,
		code: str,
		now: float | None = None,
		valid_window: int | None = None,
	) -> int | None:
		"""Find the step a submitted code belongs to.

		Args:
			secret: Hex-encoded secret
			code: Submitted code
			now: Unix time to verify at (defaults to current time)
			valid_window: Steps to check before/after the current one

		Returns:
			Matching step index, or None when nothing in the window matches
		"""
		if not isinstance(code, str):
			return None

		# Clean the code (remove spaces, dashes)
		code = code.replace(" ", "").replace("-", "")

		if not code.isascii() or not code.isdigit() or len(code) != self.digits:
			return None

		if now is None:
			now = time.time()
		if valid_window is None:
			valid_window = self.valid_window

		try:
			hotp = self._hotp(secret)
		except ValueError:
			logger.warning("TOTP secret is not valid hex")
			return None

		current = self.time_step(now)
		matched = None
		for offset in range(-valid_window, valid_window + 1):
			step = current + offset
			if step < 0:
				continue
			# No early exit, every step in the window is compared
			if secrets.compare_digest(hotp.at(step), code) and matched is None:
				matched = step

		return matched

	def verify_code(
		self,
		secret: str,
		code: str,
		now: float | None = None,
		valid_window: int | None = None,
	) -> bool:
		"""Verify a TOTP code.

		Args:
			secret: Hex-encoded secret
			code: 6-digit code to verify
			now: Unix time to verify at (defaults to current time)
			valid_window: Number of intervals to check before/after current

		Returns:
			True if code is valid
		"""
		return self.match_step(secret, code, now, valid_window) is not None

	def generate_provisioning_uri(
		self,
		secret: str,
		account_label: str,
		issuer_name: str | None = None,
	) -> str:
		"""Generate otpauth:// URI for authenticator apps.

		Args:
			secret: Hex-encoded secret
			account_label: Account shown in the app, usually the email
			issuer_name: Overrides the configured issuer

		Returns:
			otpauth://totp/{issuer}:{account}?secret=...&issuer=... URI
		"""
		key = bytes.fromhex(secret)
		totp = pyotp.TOTP(
			base64.b32encode(key).decode("ascii").rstrip("="),
			digits=self.digits,
			interval=self.interval,
		)
		return totp.provisioning_uri(
			name=account_label,
			issuer_name=issuer_name or self.issuer_name,
		)

	def generate_qr_code(
		self,
		provisioning_uri: str,
		box_size: int = 10,
		border: int = 4,
	) -> str:
		"""Generate QR code image as base64.

		Args:
			provisioning_uri: otpauth:// URI
			box_size: Size of each QR code box
			border: Border size in boxes

		Returns:
			Base64-encoded PNG image
		"""
		qr = qrcode.QRCode(
			version=1,
			error_correction=qrcode.constants.ERROR_CORRECT_L,
			box_size=box_size,
			border=border,
		)
		qr.add_data(provisioning_uri)
		qr.make(fit=True)

		img = qr.make_image(fill_color="black", back_color="white")

		buffer = io.BytesIO()
		img.save(buffer, format="PNG")
		buffer.seek(0)

		return base64.b64encode(buffer.read()).decode("utf-8")

	def setup_totp(self, account_label: str) -> TOTPSetup:
		"""Generate complete TOTP setup for a user.

		Args:
			account_label: User's email address

		Returns:
			TOTPSetup with secret, URI, and QR code
		"""
		secret = self.generate_secret()
		provisioning_uri = self.generate_provisioning_uri(secret, account_label)
		qr_code_base64 = self.generate_qr_code(provisioning_uri)

		return TOTPSetup(
			secret=secret,
			provisioning_uri=provisioning_uri,
			qr_code_base64=qr_code_base64,
		)

	def get_time_remaining(self, now: float | None = None) -> int:
		"""Get seconds remaining in current TOTP interval."""
		if now is None:
			now = time.time()
		return self.interval - int(now % self.interval)
