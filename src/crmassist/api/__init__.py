"""HTTP API for the CRM assistant."""

from crmassist.api.server import create_app

__all__ = ["create_app"]
