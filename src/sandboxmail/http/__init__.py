"""HTTP transport for sandboxmail."""

from .api_client import ApiClient

__all__ = ["ApiClient"]
