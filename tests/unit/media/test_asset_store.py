from __future__ import annotations

import httpx
import pytest

from src.studio.jobs.jobs_errors import ProviderExecutionError
from src.studio.media.media_service import AssetStore


class DummyHTTPResponse:
    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content


class DummyAsyncClient:
    def __init__(self, response: DummyHTTPResponse | Exception) -> None:
        self._response = response
        self.urls: list[str] = []

    async def __aenter__(self) -> "DummyAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        return None

    async def get(self, url: str) -> DummyHTTPResponse:
        self.urls.append(url)
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


@pytest.fixture
def store(media_paths) -> AssetStore:
    return AssetStore(media_paths)


def test_public_url_round_trip(store: AssetStore) -> None:
    path = store.save_payload("job:1", b"data", "model.glb")

    url = store.public_url(path)

    assert url == "/media/results/job_1/model.glb"
    assert store.resolve_public_url(url) == path.resolve()


def test_resolve_rejects_foreign_and_escaping_urls(store: AssetStore, media_paths) -> None:
    outside = media_paths.root.parent / "secret.txt"
    outside.write_text("nope")

    assert store.resolve_public_url("https://cdn.example.com/a.glb") is None
    assert store.resolve_public_url("/media/../secret.txt") is None
    assert store.resolve_public_url("/media/results/missing.glb") is None


@pytest.mark.asyncio
async def test_persist_remote_keeps_suffix_and_provenance(monkeypatch, store: AssetStore) -> None:
    client = DummyAsyncClient(DummyHTTPResponse(200, b"mesh"))
    monkeypatch.setattr(httpx, "AsyncClient", lambda *args, **kwargs: client)

    stored = await store.persist_remote(
        "https://assets.example.com/files/out.obj?sig=abc", key="task-9", index=2
    )

    assert stored.original_url == "https://assets.example.com/files/out.obj?sig=abc"
    assert stored.local_path.name == "asset-2.obj"
    assert stored.local_path.read_bytes() == b"mesh"
    assert stored.public_url == "/media/results/task-9/asset-2.obj"


@pytest.mark.asyncio
async def test_persist_remote_wraps_download_failures(monkeypatch, store: AssetStore) -> None:
    monkeypatch.setattr(
        httpx, "AsyncClient", lambda *args, **kwargs: DummyAsyncClient(DummyHTTPResponse(403))
    )
    with pytest.raises(ProviderExecutionError):
        await store.persist_remote("https://assets.example.com/a.glb", key="k")

    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        lambda *args, **kwargs: DummyAsyncClient(httpx.ReadTimeout("slow")),
    )
    with pytest.raises(ProviderExecutionError):
        await store.persist_remote("https://assets.example.com/a.glb", key="k")
