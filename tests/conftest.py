import asyncio
import json
import os
import sys
import time
from types import SimpleNamespace
from typing import Any, Callable, List

import aiohttp
import pytest


TESTS_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(TESTS_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from volradar.config import MultiplexerConfig  # noqa: E402

PRIMARY = "wss://primary.test/v5/public/linear"
BACKUP = "wss://backup.test/v5/public/linear"

# A minute-aligned epoch ms used as "now" across tests
BASE_MS = 28_333_333 * 60_000


class _Close:
    def __init__(self, code):
        self.code = code


_END = object()


class FakeSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self, url: str):
        self.url = url
        self.sent: List[str] = []
        self.closed = False
        self.close_code = None
        self.send_error: Exception = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    # --- driven by tests ---

    def feed(self, payload: Any) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def drop(self, code=None) -> None:
        """Server-side close. ``None`` mimics a dropped TCP connection."""
        self._inbox.put_nowait(_Close(code))

    def fail(self) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None))

    def frames(self, include_pings: bool = False) -> List[dict]:
        decoded = [json.loads(s) for s in self.sent]
        if include_pings:
            return decoded
        return [f for f in decoded if f.get("op") != "ping"]

    # --- used by the multiplexer ---

    async def send_str(self, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(text)

    async def close(self, code: int = 1000) -> None:
        if not self.closed:
            self.closed = True
            self.close_code = code
            self._inbox.put_nowait(_END)

    def exception(self):
        return RuntimeError("fake socket error")

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, _Close):
            self.closed = True
            self.close_code = item.code
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector callable that hands out FakeSockets and can be told to fail."""

    def __init__(self):
        self.urls: List[str] = []
        self.sockets: List[FakeSocket] = []
        self.fail_next = 0

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionRefusedError(f"refused: {url}")
        ws = FakeSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def kline_message(symbol: str, start: int, volume: float, close: float, open_: float = None,
                  confirm: bool = False) -> dict:
    open_ = close if open_ is None else open_
    return {
        "topic": f"kline.1.{symbol}",
        "type": "snapshot",
        "ts": start + 1000,
        "data": [{
            "start": start,
            "end": start + 59_999,
            "interval": "1",
            "open": str(open_),
            "close": str(close),
            "high": str(max(open_, close)),
            "low": str(min(open_, close)),
            "volume": str(volume),
            "turnover": "0",
            "confirm": confirm,
            "timestamp": start + 1000,
        }],
    }


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def mux_config():
    """Fast timings so reconnects and heartbeats happen within a test."""
    return MultiplexerConfig(
        endpoints=(PRIMARY, BACKUP),
        heartbeat_interval_s=0.05,
        reconnect_delay_s=0.01,
    )


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def kline():
    return kline_message
