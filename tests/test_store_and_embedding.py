from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from refimage_seeder.embedding.client import EmbeddingClient, EmbeddingFailed, RateLimited
from refimage_seeder.embedding.similarity import cosine_similarity, rank_by_similarity
from refimage_seeder.imaging.download import DownloadError, ImageDownloader, ImageTooLarge
from refimage_seeder.imaging.store import (
    ContentAddressedStore,
    InvalidImageError,
    LocalBlobStore,
    content_digest,
    sanitize_segment,
)

from _factories import FakeWeb, jpeg_bytes, png_bytes


def test_store_writes_content_addressed_path(tmp_path: Path) -> None:
    blobs = LocalBlobStore(str(tmp_path / "blobs"))
    store = ContentAddressedStore(blobs)
    data = jpeg_bytes(800, 600)

    obj = store.store(data, "watches", "Grand Seiko", "Heritage", 7)

    assert obj.sha256 == content_digest(data)
    assert obj.storage_path == f"watches/grand_seiko/7/{obj.sha256}.jpg"
    assert (obj.width, obj.height, obj.content_type, obj.file_size) == (800, 600, "image/jpeg", len(data))
    assert blobs.get(obj.storage_path) == data


def test_store_same_bytes_twice_is_idempotent(tmp_path: Path) -> None:
    blobs = LocalBlobStore(str(tmp_path / "blobs"))
    store = ContentAddressedStore(blobs)
    data = png_bytes()
    first = store.store(data, "watches", "Seiko", "5 Sports", 1)
    second = store.store(data, "watches", "Seiko", "5 Sports", 1)
    assert first == second
    files = [p for p in (tmp_path / "blobs").rglob("*") if p.is_file()]
    assert len(files) == 1


def test_store_rejects_invalid_bytes(tmp_path: Path) -> None:
    store = ContentAddressedStore(LocalBlobStore(str(tmp_path / "blobs")))
    with pytest.raises(InvalidImageError):
        store.store(png_bytes(100, 100), "watches", "Seiko", "SKX", 1)


def test_blob_paths_cannot_escape_root(tmp_path: Path) -> None:
    blobs = LocalBlobStore(str(tmp_path / "blobs"))
    with pytest.raises(ValueError):
        blobs.put("../outside.png", b"x", "image/png")


def test_sanitize_segment() -> None:
    assert sanitize_segment("Audemars Piguet") == "audemars_piguet"
    assert sanitize_segment("  ") == "unknown"
    assert sanitize_segment("A/B..C") == "a_b_c"


def test_downloader_maps_statuses_and_content_type() -> None:
    web = FakeWeb(
        {"https://img.test/a.png": png_bytes(), "https://img.test/page": b"<html></html>"},
        statuses={"https://img.test/busy": 429},
        content_types={"https://img.test/page": "text/html; charset=utf-8"},
    )

    async def run() -> None:
        async with web.client() as http:
            dl = ImageDownloader(http)
            assert await dl.fetch("https://img.test/a.png") == png_bytes()

            with pytest.raises(DownloadError) as busy:
                await dl.fetch("https://img.test/busy")
            assert busy.value.is_rate_limited and busy.value.retryable

            with pytest.raises(DownloadError) as missing:
                await dl.fetch("https://img.test/nope")
            assert missing.value.status_code == 404
            assert not missing.value.retryable

            with pytest.raises(DownloadError, match="Invalid content type"):
                await dl.fetch("https://img.test/page")

    asyncio.run(run())


def test_downloader_timeout_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(DownloadError) as err:
                await ImageDownloader(http).fetch("https://img.test/slow.jpg")
            assert err.value.timed_out and err.value.retryable

    asyncio.run(run())


def test_downloader_stops_reading_past_byte_cap() -> None:
    served = []

    async def body():
        for _ in range(100):
            served.append(1)
            yield b"\x00" * 1024

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/declared.png":
            return httpx.Response(200, content=png_bytes(), headers={"content-type": "image/png"})
        # no content-length: only the running total can trip the cap
        return httpx.Response(200, content=body(), headers={"content-type": "image/png"})

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            dl = ImageDownloader(http, max_bytes=4096)
            with pytest.raises(ImageTooLarge, match="File too large"):
                await dl.fetch("https://img.test/declared.png")
            with pytest.raises(ImageTooLarge) as err:
                await dl.fetch("https://img.test/chunked.png")
            assert not err.value.retryable

            assert await ImageDownloader(http, max_bytes=len(png_bytes())).fetch("https://img.test/declared.png") == png_bytes()

    asyncio.run(run())
    assert len(served) < 10


def test_embedding_client_success_and_payload() -> None:
    web = FakeWeb()
    data = png_bytes()

    async def run():
        async with web.client() as http:
            return await EmbeddingClient(http, "secret").embed(data)

    result = asyncio.run(run())
    assert len(result.embedding) == 768
    assert result.sha256 == content_digest(data)
    sent = web.requests[0]
    assert sent.headers["Authorization"] == "Bearer secret"
    assert b"data:image/png;base64," in sent.content
    assert b"jina-clip-v1" in sent.content


def test_embedding_client_error_classes() -> None:
    web = FakeWeb(embed_statuses=[429, 503, 500])

    async def run() -> None:
        async with web.client() as http:
            client = EmbeddingClient(http, "secret")
            for _ in range(2):
                with pytest.raises(RateLimited):
                    await client.embed(png_bytes())
            with pytest.raises(EmbeddingFailed) as err:
                await client.embed(png_bytes())
            assert not isinstance(err.value, RateLimited)
            # HTML error pages are reduced to the reason phrase.
            assert "<html" not in str(err.value)

            with pytest.raises(EmbeddingFailed, match="JINA_API_KEY"):
                await EmbeddingClient(http, None).embed(png_bytes())

    asyncio.run(run())


def test_embedding_client_rejects_wrong_dimension() -> None:
    web = FakeWeb(embedding=lambda: {"data": [{"embedding": [0.5] * 12}]})

    async def run() -> None:
        async with web.client() as http:
            with pytest.raises(EmbeddingFailed, match="length"):
                await EmbeddingClient(http, "secret").embed(png_bytes())

    asyncio.run(run())


def test_cosine_similarity_and_ranking() -> None:
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1, 2], [1, 2, 3])

    ranked = rank_by_similarity([1.0, 0.0], [("a", [0.0, 1.0]), ("b", [1.0, 0.1]), ("c", [1.0, 1.0])], top_k=2)
    assert [k for k, _ in ranked] == ["b", "c"]
    assert rank_by_similarity([1.0], [], top_k=3) == []
