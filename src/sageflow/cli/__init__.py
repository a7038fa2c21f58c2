"""Command line interface.

Responsibility: Exposes event replay, job inspection and manual deployment as a
Typer application.
"""

from .main import app

__all__ = ["app"]
