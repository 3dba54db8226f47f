"""HTTP API for the claim-intake pipeline."""

from .app import app, create_app, get_pipeline

__all__ = ["app", "create_app", "get_pipeline"]
