import threading
from typing import Callable, Optional

import httpx
import pytest
from PIL import Image

from notes_ocr.config import settings
from notes_ocr.exceptions import PageNotFoundError, RasterizationError


class FakeRasterizer:
    """In-memory rasterizer: renders blank Pillow pages, no poppler needed."""

    def __init__(
        self,
        page_count: int,
        metadata: bool = True,
        failing_pages: tuple[int, ...] = (),
    ) -> None:
        self.page_count = page_count
        self.metadata = metadata
        self.failing_pages = set(failing_pages)
        self.render_calls: list[int] = []
        self.max_concurrent = 0
        self._active = 0
        self._lock = threading.Lock()

    def count_pages(self, pdf_bytes: bytes) -> Optional[int]:
        return self.page_count if self.metadata else None

    def render_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        dpi: Optional[int] = None,
    ) -> Image.Image:
        with self._lock:
            self.render_calls.append(page_number)
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)
        try:
            if page_number > self.page_count:
                raise PageNotFoundError(page_number)
            if page_number in self.failing_pages:
                raise RasterizationError(f"broken page {page_number}")
            return Image.new("RGB", (400, 600), "white")
        finally:
            with self._lock:
                self._active -= 1


def chat_response(content: Optional[str]) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def page_number_from_request(request: httpx.Request) -> int:
    body = request.read().decode()
    marker = "(Page "
    start = body.index(marker) + len(marker)
    return int(body[start:body.index(")", start)])


@pytest.fixture()
def make_rasterizer() -> Callable[..., FakeRasterizer]:
    return FakeRasterizer


@pytest.fixture()
def page_text_transport() -> httpx.MockTransport:
    """Recognition API answering every page with plausible handwritten-notes text."""

    def handler(request: httpx.Request) -> httpx.Response:
        if b"(Page " not in request.read():
            return httpx.Response(200, json=chat_response("Connection successful"))
        page = page_number_from_request(request)
        text = (
            f"Lecture Notes page {page}.\n"
            "Topics: Newton Laws and Kepler Orbits.\n"
            "Homework due Friday."
        )
        return httpx.Response(200, json=chat_response(text))

    return httpx.MockTransport(handler)


@pytest.fixture()
def no_batch_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "recognition_batch_delay_seconds", 0.0)
