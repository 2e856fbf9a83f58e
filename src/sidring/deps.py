"""FastAPI dependencies for sidring routes."""

from __future__ import annotations

from fastapi import Request

from sidring.config import SidringConfig


def get_config(request: Request) -> SidringConfig:
    """Get the loaded configuration from app state."""
    return request.app.state.config
