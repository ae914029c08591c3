"""In-process reference backend serving the REST surface the console consumes."""

from .app import create_app

__all__ = ["create_app"]
