# (c) Copyright Datacraft, 2026
"""Out-of-band delivery of challenge codes.

Providers are chosen once at startup from configuration. Without
credentials the console sender is used, which only logs that a message
would have been sent.
"""
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from twofactor.config import Settings

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"


def mask_address(address: str) -> str:
	"""Keep the first three characters of an address for logs."""
	return address[:3] + "***"


@runtime_checkable
class SMSSender(Protocol):
	async def send_sms(self, to: str, message: str) -> None:
		...


@runtime_checkable
class EmailSender(Protocol):
	async def send_email(self, to: str, subject: str, body: str) -> None:
		...


class ConsoleSender:
	"""Development sender; logs instead of delivering."""

	async def send_sms(self, to: str, message: str) -> None:
		logger.info(f"Development SMS to {mask_address(to)} ({len(message)} chars)")

	async def send_email(self, to: str, subject: str, body: str) -> None:
		logger.info(f"Development email to {mask_address(to)}: {subject}")


class TwilioSMSSender:
	"""Sends SMS through the Twilio REST API."""

	def __init__(
		self,
		account_sid: str,
		auth_token: str,
		from_number: str,
		timeout: float = 10.0,
		client: httpx.AsyncClient | None = None,
	):
		self.account_sid = account_sid
		self.auth_token = auth_token
		self.from_number = from_number
		self.timeout = timeout
		self._client = client

	async def send_sms(self, to: str, message: str) -> None:
		url = f"{TWILIO_API_URL}/Accounts/{self.account_sid}/Messages.json"
		data = {"To": to, "From": self.from_number, "Body": message}

		if self._client is not None:
			response = await self._client.post(
				url, data=data, auth=(self.account_sid, self.auth_token), timeout=self.timeout
			)
		else:
			async with httpx.AsyncClient() as client:
				response = await client.post(
					url, data=data, auth=(self.account_sid, self.auth_token), timeout=self.timeout
				)
		response.raise_for_status()

		logger.info(
			f"SMS sent via Twilio to {mask_address(to)} (SID: {response.json().get('sid')})"
		)


class SendGridEmailSender:
	"""Sends HTML email through the SendGrid v3 API."""

	def __init__(
		self,
		api_key: str,
		from_email: str,
		timeout: float = 10.0,
		client: httpx.AsyncClient | None = None,
	):
		self.api_key = api_key
		self.from_email = from_email
		self.timeout = timeout
		self._client = client

	async def send_email(self, to: str, subject: str, body: str) -> None:
		payload = {
			"personalizations": [{"to": [{"email": to}]}],
			"from": {"email": self.from_email},
			"subject": subject,
			"content": [{"type": "text/html", "value": body}],
		}
		headers = {"Authorization": f"Bearer {self.api_key}"}

		if self._client is not None:
			response = await self._client.post(
				SENDGRID_API_URL, json=payload, headers=headers, timeout=self.timeout
			)
		else:
			async with httpx.AsyncClient() as client:
				response = await client.post(
					SENDGRID_API_URL, json=payload, headers=headers, timeout=self.timeout
				)
		response.raise_for_status()

		logger.info(f"Email sent via SendGrid to {mask_address(to)} (status {response.status_code})")


@dataclass
class Delivery:
	"""SMS and email capability handed to the challenge coordinator."""
	sms: SMSSender
	email: EmailSender

	async def send_sms(self, to: str, message: str) -> None:
		await self.sms.send_sms(to, message)

	async def send_email(self, to: str, subject: str, body: str) -> None:
		await self.email.send_email(to, subject, body)


def build_delivery(settings: Settings) -> Delivery:
	"""Pick providers from configuration."""
	console = ConsoleSender()

	sms: SMSSender = console
	if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number:
		sms = TwilioSMSSender(
			settings.twilio_account_sid,
			settings.twilio_auth_token,
			settings.twilio_from_number,
			timeout=settings.delivery_timeout,
		)
	else:
		logger.warning("Twilio credentials not configured, SMS codes will only be logged")

	email: EmailSender = console
	if settings.sendgrid_api_key:
		email = SendGridEmailSender(
			settings.sendgrid_api_key,
			settings.sendgrid_from_email,
			timeout=settings.delivery_timeout,
		)
	else:
		logger.warning("SendGrid API key not configured, email codes will only be logged")

	return Delivery(sms=sms, email=email)
