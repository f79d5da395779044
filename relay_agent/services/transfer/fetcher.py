"""
HTTP fetcher - streams a remote object to a local file.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles
import httpx

from relay_agent.config import Settings
from relay_agent.core.exceptions import FetchIOError, NetworkError


class HttpFetcher:
    """Streams a URL to disk chunk by chunk. No bound on transfer duration unless configured."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.download_timeout_seconds),
                follow_redirects=True,
            )
        return self._client

    async def fetch(self, url: str, destination: Union[str, Path]) -> int:
        """
        Download ``url`` to ``destination``.

        Returns:
            Number of bytes written.

        Raises:
            NetworkError: the remote source could not be streamed.
            FetchIOError: the destination could not be written.
        """
        client = await self._get_client()
        bytes_written = 0

        try:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                async with aiofiles.open(destination, "wb") as dst:
                    async for chunk in response.aiter_bytes(
                        self.settings.download_chunk_size
                    ):
                        await dst.write(chunk)
                        bytes_written += len(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(f"Download failed: {e}") from e
        except OSError as e:
            raise FetchIOError(f"Download failed writing {destination}: {e}") from e

        logging.debug(f"Fetched {bytes_written:,} bytes from {url}")
        return bytes_written

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
