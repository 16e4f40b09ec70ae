from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from baya_agent.catalog import ArtworkRecord, record_from_raw
from baya_agent.config import Settings

RAW_CATALOG: List[Dict[str, object]] = [
    {
        "id": "A1",
        "title": "Bold Horizon",
        "artist": "Dana Katz",
        "price": 500,
        "slug": "bold horizon",
        "main_image": "a1.jpg",
        "short_spec": "Acrylic, 80x60 cm",
        "search_blob": "bold horizon abstract living room red",
    },
    {
        "id": "A2",
        "title": "Still Water",
        "artist": "Eli Ron",
        "price": 300,
        "slug": "still-water",
        "main_image": "a2.jpg",
        "short_spec": "Print, 50x40 cm",
        "search_blob": "still water minimal bedroom blue",
    },
    {
        "id": "A3",
        "title": "Quiet Study",
        "artist": "Noa Bar",
        "price": 199,
        "slug": "quiet-study",
        "main_image": "",
        "short_spec": "",
        "search_blob": "quiet study minimal office",
    },
]


@pytest.fixture
def raw_catalog() -> List[Dict[str, object]]:
    return [dict(entry) for entry in RAW_CATALOG]


@pytest.fixture
def records(raw_catalog) -> List[ArtworkRecord]:
    return [record_from_raw(entry, index) for index, entry in enumerate(raw_catalog)]


@pytest.fixture
def catalog_file(tmp_path: Path, raw_catalog) -> Path:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(raw_catalog), encoding="utf-8")
    return path


@pytest.fixture
def make_settings(catalog_file: Path) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        base = Settings(
            openai_api_key="sk-test",
            catalog_path=catalog_file,
            reply_strategy="template",
            base_product_url="https://gallery.test/art/",
        )
        return replace(base, **overrides)

    return _make


class RecordingTransport:
    """MockTransport handler that records requests and replays a canned response."""

    def __init__(self, status: int = 200, body: Optional[object] = None, text: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.status = status
        self.body = body
        self.text = text
        self.error = error
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body if self.body is not None else {})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def last_json(self) -> Dict[str, object]:
        return json.loads(self.requests[-1].content.decode("utf-8"))


def _completion_body(text: str) -> Dict[str, object]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}


@pytest.fixture
def completion_body() -> Callable[[str], Dict[str, object]]:
    return _completion_body


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport
