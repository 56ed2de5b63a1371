"""
Error taxonomy and FastAPI exception handlers.
Provider errors are absorbed by the stage that issued the call; only the
favorites errors and validation failures reach the caller.
"""

from typing import Optional

from fastapi import Request  # handler signature
from fastapi.encoders import jsonable_encoder  # serializable error details
from fastapi.exceptions import RequestValidationError  # pydantic boundary failures
from fastapi.responses import JSONResponse  # JSON error bodies
from loguru import logger  # console logger


class VibeSearchError(Exception):
	"""Base exception for the application"""
	status_code = 500


class ProviderError(VibeSearchError):
	"""An upstream provider returned a non-2xx status or an unusable body."""
	status_code = 502

	def __init__(self, provider: str, status: Optional[int] = None, message: str = ""):
		self.provider = provider
		self.status = status
		super().__init__(message or f"{provider} request failed ({status})")


class ProviderRateLimited(ProviderError):
	"""The upstream provider answered 429."""


class PosterBatchError(VibeSearchError):
	"""A batched poster request got no outcome for its show id."""
	status_code = 502

	def __init__(self, show_id: str, message: str = ""):
		self.show_id = show_id
		super().__init__(message or f"Poster lookup failed for {show_id}")


class TitleNotFoundError(VibeSearchError):
	status_code = 404

	def __init__(self, show_id: str):
		self.show_id = show_id
		super().__init__("Title not found")


class MissingOwnerError(VibeSearchError):
	status_code = 401

	def __init__(self):
		super().__init__("Missing session - cannot identify favorites owner")


async def vibe_search_exception_handler(request: Request, exc: VibeSearchError):
	"""Map application errors to their HTTP status."""
	if exc.status_code >= 500:
		logger.error(f"[API] {request.url.path} failed: {exc}")
	else:
		logger.info(f"[API] {request.url.path} -> HTTP {exc.status_code}: {exc}")
	return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
	"""
	Handle Pydantic validation errors.
	"""
	logger.info(f"[API] Validation error on {request.url.path}: {exc.errors()}")
	return JSONResponse(
		status_code=422,
		content={"error": "Validation Error", "details": jsonable_encoder(exc.errors())},
	)


async def global_exception_handler(request: Request, exc: Exception):
	"""
	Catch-all handler; returns 500 and hides internal error details.
	"""
	logger.opt(exception=exc).error(f"[API] Unhandled exception on {request.url.path}")
	return JSONResponse(
		status_code=500,
		content={
			"error": "Internal Server Error",
			"message": "An unexpected error occurred.",
		},
	)
