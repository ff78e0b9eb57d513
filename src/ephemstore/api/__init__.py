"""ephemstore HTTP API."""

from ephemstore.api.main import create_app

__all__ = ["create_app"]
