"""Raw file transfer to the upload target issued by the Zotero API."""

import hashlib
import logging
import os
from typing import AsyncIterator, Optional

import httpx

from services.zotero_library.errors import UploadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
SUCCESS_STATUS_CODES = (201, 204)


def file_md5(filepath: str) -> str:
    """Return the hex MD5 digest of a file, read in chunks."""
    md5 = hashlib.md5()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            md5.update(chunk)
    return md5.hexdigest()


class FileUploader:
    """Streams a file, wrapped in server-rendered multipart framing, to an upload URL."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 300.0):
        """
        Initialize file uploader.

        Args:
            http_client: Optional preconfigured client (used in tests)
            timeout: Transfer timeout in seconds
        """
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def upload_file(
        self,
        url: str,
        filepath: str,
        content_type: str,
        prefix: bytes = b"",
        suffix: bytes = b""
    ) -> int:
        """
        Upload prefix, file contents and suffix as a single request body.

        Args:
            url: Upload target URL
            filepath: Local file to send
            content_type: Content-Type given by the server
            prefix: Bytes sent before the file contents
            suffix: Bytes sent after the file contents

        Returns:
            HTTP status code of the upload response

        Raises:
            UploadError: If the upload target does not answer 201 or 204
        """
        upload_size = len(prefix) + os.path.getsize(filepath) + len(suffix)
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(upload_size)
        }

        logger.info(f"Uploading {os.path.basename(filepath)} ({upload_size} bytes)")
        response = await self.client.post(
            url,
            content=self._stream_body(filepath, prefix, suffix, upload_size),
            headers=headers
        )

        if response.status_code not in SUCCESS_STATUS_CODES:
            raise UploadError(
                f"Http Error {response.status_code}: {response.text}",
                status_code=response.status_code
            )

        return response.status_code

    async def _stream_body(
        self,
        filepath: str,
        prefix: bytes,
        suffix: bytes,
        upload_size: int
    ) -> AsyncIterator[bytes]:
        sent = 0
        if prefix:
            sent += len(prefix)
            yield prefix

        with open(filepath, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                sent += len(chunk)
                logger.debug(f"Sent {sent} of {upload_size} bytes of data.")
                yield chunk

        if suffix:
            sent += len(suffix)
            yield suffix
