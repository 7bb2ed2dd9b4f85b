from typing import Dict, Iterable, List, Optional

import pytest
import requests


class FakeResponse:
    def __init__(self, body: bytes = b"", status_code: int = 200):
        self.content = body
        self.status_code = status_code
        self.closed = False

    def iter_content(self, chunk_size: int = 1) -> Iterable[bytes]:
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeSession:
    """Serves canned bodies by URL; unknown URLs fail like a refused connection."""

    def __init__(
        self,
        pages: Optional[Dict[str, bytes]] = None,
        status: Optional[Dict[str, int]] = None,
    ):
        self.pages = dict(pages or {})
        self.status = dict(status or {})
        self.calls: List[dict] = []
        self.closed = False

    def get(self, url: str, timeout=None, stream: bool = False) -> FakeResponse:
        self.calls.append({"url": url, "timeout": timeout, "stream": stream})
        if url not in self.pages:
            raise requests.ConnectionError(f"connection refused: {url}")
        return FakeResponse(self.pages[url], self.status.get(url, 200))

    def close(self) -> None:
        self.closed = True

    @property
    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]


@pytest.fixture
def fake_session():
    return FakeSession
