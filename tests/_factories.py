"""Synthetic image payloads and HTTP fakes shared by the test modules."""

from __future__ import annotations

import json
import struct
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

from refimage_seeder.config import SeederSettings
from refimage_seeder.library.db import LibraryDatabase

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _pad(header: bytes, size: int, salt: int) -> bytes:
    tail = struct.pack(">I", salt)
    filler = max(0, size - len(header) - len(tail))
    return header + b"\x00" * filler + tail


def png_bytes(width: int = 640, height: int = 480, *, size: int = 20_000, salt: int = 0) -> bytes:
    ihdr = struct.pack(">II", width, height) + b"\x08\x02\x00\x00\x00"
    header = PNG_SIGNATURE + struct.pack(">I", 13) + b"IHDR" + ihdr + b"\x00\x00\x00\x00"
    return _pad(header, size, salt)


def jpeg_bytes(width: int = 640, height: int = 480, *, size: int = 20_000, salt: int = 0, sof: int = 0xC0) -> bytes:
    app0 = b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    frame = struct.pack(">BHHB", 8, height, width, 3) + b"\x01\x22\x00\x02\x11\x01\x03\x11\x01"
    sof_segment = bytes([0xFF, sof]) + struct.pack(">H", 2 + len(frame)) + frame
    return _pad(b"\xff\xd8" + app0 + sof_segment, size, salt)


def webp_vp8x_bytes(width: int = 640, height: int = 480, *, size: int = 20_000, salt: int = 0) -> bytes:
    body = b"VP8X" + struct.pack("<I", 10) + b"\x00\x00\x00\x00"
    body += (width - 1).to_bytes(3, "little") + (height - 1).to_bytes(3, "little")
    header = b"RIFF" + struct.pack("<I", size - 8) + b"WEBP" + body
    return _pad(header, size, salt)


def make_db(tmp_path: Path) -> LibraryDatabase:
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    return LibraryDatabase(root_dir=str(tmp_path))


def fast_settings(**overrides) -> SeederSettings:
    settings = SeederSettings(batch_delay=0.0, rate_limit_cooldown=0.0, search_delay=0.0)
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


async def no_sleep(_: float) -> None:
    return None


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def embedding_payload(dim: int = 768, value: float = 0.1) -> Dict:
    return {"data": [{"embedding": [value] * dim}]}


class FakeWeb:
    """httpx.MockTransport handler serving images, embeddings and search results.

    - `images` maps URL -> bytes (served as image/png unless `content_types` overrides)
    - `statuses` maps URL -> forced HTTP status
    - `embed_statuses` is consumed one status per embedding call (default 200)
    - `search_results` maps query -> list of SerpAPI-style result dicts
    """

    def __init__(
        self,
        images: Optional[Dict[str, bytes]] = None,
        *,
        statuses: Optional[Dict[str, int]] = None,
        content_types: Optional[Dict[str, str]] = None,
        embed_statuses: Optional[List[int]] = None,
        search_results: Optional[Dict[str, List[Dict]]] = None,
        embedding: Optional[Callable[[], Dict]] = None,
    ) -> None:
        self.images = dict(images or {})
        self.statuses = dict(statuses or {})
        self.content_types = dict(content_types or {})
        self.embed_statuses = list(embed_statuses or [])
        self.search_results = dict(search_results or {})
        self.embedding = embedding or embedding_payload
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if request.url.host == "api.jina.ai":
            status = self.embed_statuses.pop(0) if self.embed_statuses else 200
            if status != 200:
                return httpx.Response(status, text="<!DOCTYPE html><html>busy</html>")
            return httpx.Response(200, json=self.embedding())
        if request.url.host == "serpapi.com":
            query = request.url.params.get("q", "")
            return httpx.Response(200, json={"images_results": self.search_results.get(query, [])})
        if url in self.statuses:
            return httpx.Response(self.statuses[url])
        if url in self.images:
            ctype = self.content_types.get(url, "image/png")
            return httpx.Response(200, content=self.images[url], headers={"content-type": ctype})
        return httpx.Response(404)

    def count(self, host: str) -> int:
        return sum(1 for r in self.requests if r.url.host == host)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def write_seed(path: Path, families: List[Dict]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"families": families}), encoding="utf-8")
    return path
