"""Remote, content-addressed file references.

A FileRef names content by digest rather than holding it. The content is
downloaded on demand, so the variant is async-only: ``to_stream_async()``
fetches the blob, and ``to_stream()`` raises ``UnsupportedAccessError``.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import BinaryIO, ClassVar

import httpx

from builder_contract.config import get_settings
from builder_contract.errors import FileFetchError
from builder_contract.files.base import DEFAULT_MODE, FileBase
from builder_contract.types import FileAccess

logger = logging.getLogger(__name__)

# sha:<hex> for persistent blobs, sha+ephemeral:<hex> for short-lived ones
DIGEST_PATTERN = re.compile(r"^sha(\+ephemeral)?:([0-9a-f]{40,64})$")

DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


@dataclass(frozen=True)
class FileRef(FileBase):
    """File whose content is stored remotely under a digest.

    Attributes:
        digest: ``sha:<hex>`` or ``sha+ephemeral:<hex>``.
        mode: POSIX mode bits.
        content_type: Optional MIME type.
        url: Explicit download URL; derived from the digest when not given.
    """

    type: ClassVar[str] = "FileRef"
    access: ClassVar[FileAccess] = FileAccess.ASYNC

    digest: str
    mode: int = DEFAULT_MODE
    content_type: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        if not DIGEST_PATTERN.match(self.digest):
            raise ValueError(
                f"digest must look like 'sha:<hex>' or 'sha+ephemeral:<hex>', "
                f"got '{self.digest}'"
            )

    @property
    def sha(self) -> str:
        """The hex part of the digest."""
        return self.digest.split(":", 1)[1]

    @property
    def is_ephemeral(self) -> bool:
        """Whether the blob lives in short-lived storage."""
        return self.digest.startswith("sha+ephemeral:")

    def resolve_url(self, base_url: str | None = None) -> str:
        """Return the URL the content is downloaded from.

        Args:
            base_url: Blob store origin; defaults to ``Settings.blob_base_url``.

        Returns:
            Download URL.
        """
        if self.url:
            return self.url
        if base_url is None:
            base_url = get_settings().blob_base_url
        prefix = "ephemeral/" if self.is_ephemeral else ""
        return f"{base_url.rstrip('/')}/{prefix}{self.sha}"

    def _open(self) -> BinaryIO:
        # Only reachable through to_stream(), which refuses async variants.
        raise NotImplementedError

    async def to_stream_async(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> BinaryIO:
        """Download the content and return a fresh stream over it.

        Each call downloads again, so repeated calls each get a complete,
        independent stream.

        Args:
            client: Optional shared HTTP client.
            timeout: Request timeout in seconds; defaults to
                ``Settings.fetch_timeout``.

        Returns:
            Binary stream positioned at the start of the content.

        Raises:
            FileFetchError: If the download fails.
        """
        url = self.resolve_url()
        if timeout is None:
            timeout = get_settings().fetch_timeout

        manage_client = client is None
        if client is None:
            http_client = httpx.AsyncClient(follow_redirects=True)
        else:
            http_client = client

        buffer = io.BytesIO()
        try:
            logger.debug("Fetching %s from %s", self.digest, url)
            async with http_client.stream("GET", url, timeout=timeout) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    buffer.write(chunk)
        except httpx.HTTPStatusError as e:
            raise FileFetchError(
                f"HTTP {e.response.status_code} fetching {self.digest} from {url}",
                details={"digest": self.digest, "url": url},
            ) from e
        except httpx.TimeoutException as e:
            raise FileFetchError(
                f"Timeout fetching {self.digest} from {url}",
                details={"digest": self.digest, "url": url},
            ) from e
        except httpx.RequestError as e:
            raise FileFetchError(
                f"Request failed fetching {self.digest}: {e}",
                details={"digest": self.digest, "url": url},
            ) from e
        finally:
            if manage_client:
                await http_client.aclose()

        buffer.seek(0)
        return buffer

    def __repr__(self) -> str:
        return f"<FileRef(digest='{self.digest}', mode={oct(self.mode)})>"


__all__ = ["DIGEST_PATTERN", "FileRef"]
