"""The interface every client plugin implements."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ClientPlugin(ABC):
    """A handler for requests under a plugin's URL prefix.

    ``body`` is the raw request body, ``query`` the URL query string,
    ``path`` the sub-path after the plugin name (starting with ``/``) and
    ``method`` the HTTP method name, such as ``"GET"``.
    """

    @abstractmethod
    def handle(self, body: bytes, query: str, path: str, method: str) -> bytes:
        """Serve the request and return the response body."""

    @abstractmethod
    def validate_auth(self, body: bytes, query: str, path: str, method: str) -> bool:
        """Return True when the request must pass admin authentication first."""

    @abstractmethod
    def encrypted(self, body: bytes, query: str, path: str, method: str) -> bool:
        """Return True when the response must be encrypted with the TEE key."""