"""Base fetcher interface for candidate pages."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class FetchResult:
    """Response of a candidate fetch. Non-2xx statuses are returned, not raised."""

    data: Any
    status: int
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class BaseFetcher(ABC):
    """Abstract base class for candidate fetchers."""

    @abstractmethod
    async def get(
        self,
        url: str,
        timeout_ms: int,
        use_session: bool = True,
    ) -> FetchResult:
        """
        Fetch a URL.

        Args:
            url: Page URL
            timeout_ms: Request timeout in milliseconds
            use_session: Reuse a sticky client/session across calls

        Returns:
            FetchResult

        Raises:
            FetchError: If no response could be obtained
        """
        pass

    async def close(self) -> None:
        """Release clients, browsers and sessions."""
        return None
