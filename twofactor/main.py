# (c) Copyright Datacraft, 2026
"""Application factory for the two-factor service."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from twofactor.exceptions import (
	EncodingError,
	InvalidStateError,
	StoreUnavailableError,
	UserNotFoundError,
)
from twofactor.mfa.router import router as two_factor_router

logger = logging.getLogger(__name__)


async def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
	return JSONResponse(
		status_code=status.HTTP_409_CONFLICT,
		content={"error": "INVALID_STATE", "message": str(exc)},
	)


async def user_not_found_handler(request: Request, exc: UserNotFoundError) -> JSONResponse:
	return JSONResponse(
		status_code=status.HTTP_404_NOT_FOUND,
		content={"error": "NOT_FOUND", "message": str(exc)},
	)


async def unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
	"""Storage and codec failures; details stay in the log."""
	logger.error(
		f"2FA backend failure on {request.url.path}: {type(exc).__name__}: {exc}",
		exc_info=exc,
	)
	return JSONResponse(
		status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
		content={
			"error": "SERVICE_UNAVAILABLE",
			"message": "Two-factor authentication is temporarily unavailable",
		},
	)


def register_error_handlers(app: FastAPI) -> None:
	app.add_exception_handler(InvalidStateError, invalid_state_handler)
	app.add_exception_handler(UserNotFoundError, user_not_found_handler)
	app.add_exception_handler(EncodingError, unavailable_handler)
	app.add_exception_handler(StoreUnavailableError, unavailable_handler)


def create_app() -> FastAPI:
	app = FastAPI(title="Two-Factor Authentication")
	register_error_handlers(app)
	app.include_router(two_factor_router)
	return app


app = create_app()
