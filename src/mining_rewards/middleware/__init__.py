"""Middleware registration."""

from fastapi import FastAPI

from mining_rewards.config import Settings
from mining_rewards.middleware.error_handler import setup_error_handlers
from mining_rewards.middleware.logging import setup_logging
from mining_rewards.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and the request-id middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
