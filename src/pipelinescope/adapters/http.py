"""HTTP metrics source for the pipeline controller's Prometheus endpoint."""

import httpx

from pipelinescope.core.errors import MetricsUnavailableError

DEFAULT_TIMEOUT = 10.0


class HttpMetricsSource:
    """Fetches a Prometheus text exposition body over HTTP.

    Args:
        url: Metrics endpoint URL.
        timeout: Request timeout in seconds.
        client: Optional shared AsyncClient. When omitted the source owns a
            client and closes it in aclose().
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch(self) -> str:
        """Return the exposition text.

        Raises:
            MetricsUnavailableError: On transport errors or non-200 responses.
        """
        try:
            response = await self._client.get(self.url)
        except httpx.HTTPError as exc:
            raise MetricsUnavailableError(f"Failed to fetch metrics from {self.url}: {exc}") from exc
        if response.status_code != 200:
            raise MetricsUnavailableError(
                f"Metrics endpoint {self.url} returned status {response.status_code}"
            )
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
