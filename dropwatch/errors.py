"""Fetch error taxonomy shared by fetchers and the candidate checker."""

from typing import Optional


class FetchError(RuntimeError):
    """A candidate fetch failed before a usable response was produced."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class TransientNetworkError(FetchError):
    """Timeout, connection reset or DNS failure. Retried on the next batch."""


class BlockedResponseError(FetchError):
    """Provider reported a bot check or 403/407/429."""


class DefinitiveGoneError(FetchError):
    """The URL is gone (404/410). No automated recovery."""
