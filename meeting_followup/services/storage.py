"""
Resolves stored recording references into audio bytes.
"""
import asyncio
import mimetypes
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx
from aiolimiter import AsyncLimiter

from meeting_followup.exceptions import PermanentIntegrationError
from meeting_followup.services.base import BaseHTTPService
from meeting_followup.services.contracts import Recording


class LocalAndHTTPStorage(BaseHTTPService):
    """Reads ``file://`` URLs and bare paths from disk and ``http(s)://`` URLs over HTTP."""

    integration = "storage"

    def __init__(
        self,
        timeout: float = 60.0,
        base_dir: Optional[Path] = None,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout, limiter=limiter, transport=transport)
        self.base_dir = base_dir

    async def resolve(self, recording_ref: str) -> Recording:
        parsed = urlparse(recording_ref)
        if parsed.scheme in ("http", "https"):
            return await self._download(recording_ref, parsed.path)
        if parsed.scheme in ("", "file"):
            path = Path(unquote(parsed.path) if parsed.scheme == "file" else recording_ref)
            return await self._read_file(path)
        raise PermanentIntegrationError(
            f"Unsupported recording reference scheme '{parsed.scheme}'",
            integration=self.integration,
        )

    async def _read_file(self, path: Path) -> Recording:
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        if not path.is_file():
            raise PermanentIntegrationError(f"Recording not found: {path}", integration=self.integration, status_code=404)
        content = await asyncio.to_thread(path.read_bytes)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return Recording(content=content, filename=path.name, content_type=content_type)

    async def _download(self, url: str, url_path: str) -> Recording:
        response = await self._request("GET", url, "download_recording")
        filename = Path(url_path).name or "recording"
        content_type = response.headers.get("Content-Type", "application/octet-stream").split(";")[0]
        return Recording(content=response.content, filename=filename, content_type=content_type)
