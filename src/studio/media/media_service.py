"""Local storage for generated assets downloaded from vendors."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from ..config import MediaPaths
from ..jobs.jobs_errors import ProviderExecutionError

logger = logging.getLogger(__name__)

MEDIA_URL_PREFIX = "/media"
_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(slots=True)
class StoredAsset:
    """A remote asset persisted under the media root."""

    original_url: str
    local_path: Path
    public_url: str


@dataclass(slots=True)
class AssetStore:
    """Download vendor results so they outlive the vendor's signed URLs."""

    paths: MediaPaths
    timeout_seconds: float = 60.0
    log: logging.Logger = field(default_factory=lambda: logger)

    def result_dir(self, key: str) -> Path:
        return self.paths.results / _SAFE_KEY.sub("_", key)

    def ensure_structure(self, key: str) -> Path:
        directory = self.result_dir(key)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def save_payload(self, key: str, data: bytes, filename: str) -> Path:
        directory = self.ensure_structure(key)
        path = directory / _SAFE_KEY.sub("_", filename)
        path.write_bytes(data)
        return path

    def public_url(self, path: Path) -> str:
        relative = path.resolve().relative_to(self.paths.root.resolve())
        return f"{MEDIA_URL_PREFIX}/{PurePosixPath(*relative.parts)}"

    def resolve_public_url(self, url: str) -> Path | None:
        """Map a ``/media/...`` URL back to an existing file under the media root."""
        if not url.startswith(f"{MEDIA_URL_PREFIX}/"):
            return None
        relative = url[len(MEDIA_URL_PREFIX) + 1 :]
        root = self.paths.root.resolve()
        candidate = (root / relative).resolve()
        if root not in candidate.parents or not candidate.is_file():
            return None
        return candidate

    async def persist_remote(
        self,
        url: str,
        *,
        key: str,
        index: int = 0,
        default_suffix: str = ".bin",
    ) -> StoredAsset:
        suffix = PurePosixPath(urlparse(url).path).suffix or default_suffix
        filename = f"asset-{index}{suffix}"
        self.log.info("media.download.start", extra={"url": url, "key": key})
        try:
            payload = await self._download(url)
        except httpx.HTTPError as exc:
            raise ProviderExecutionError(f"Asset download failed: {exc}") from exc
        path = self.save_payload(key, payload, filename)
        self.log.info(
            "media.download.stored",
            extra={"url": url, "key": key, "path": str(path), "size_bytes": len(payload)},
        )
        return StoredAsset(original_url=url, local_path=path, public_url=self.public_url(path))

    async def _download(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True) as client:
            response = await client.get(url)
        if response.status_code != 200:
            raise ProviderExecutionError(
                f"Asset download failed with status {response.status_code}"
            )
        return response.content
