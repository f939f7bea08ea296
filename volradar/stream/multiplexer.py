"""
Stream Multiplexer - one websocket, many topic consumers.

Handles:
- Topic subscription registry with reference counting per topic
- Demultiplexing of data frames to every handler of the topic
- Application-level heartbeat (ping every 20s)
- Reconnect with a fixed delay, resubscribing the full topic set
- Round-robin endpoint failover on abnormal close codes

All state lives on one event loop. Outbound frames go through a single
writer task, so no lock is held across a network send.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import aiohttp

from ..config import MultiplexerConfig
from ..metrics import MetricsCollector
from .frames import (
    CommandAck,
    ErrorFrame,
    FrameError,
    PongFrame,
    TopicFrame,
    encode_ping,
    encode_subscribe,
    encode_unsubscribe,
    parse_frame,
)

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006

Handler = Callable[[TopicFrame], Any]
Connector = Callable[[str], Awaitable[Any]]
Unsubscribe = Callable[[], None]


class ConnectionState(Enum):
    """State of the multiplexed connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class StreamStats:
    """Statistics for the multiplexed stream."""

    messages_received: int = 0
    bytes_received: int = 0
    last_message_time: Optional[int] = None
    frames_dispatched: int = 0
    connect_count: int = 0
    reconnect_count: int = 0
    failover_count: int = 0
    error_count: int = 0
    parse_errors: int = 0
    handler_errors: int = 0
    last_close_code: Optional[int] = None


class StreamMultiplexer:
    """
    Single websocket connection shared by many topic subscribers.

    Usage:
        mux = StreamMultiplexer()
        unsubscribe = mux.subscribe(["kline.1.BTCUSDT"], on_kline)
        async with mux:
            ...
        unsubscribe()

    Handlers receive typed frames (KlineFrame, TickerFrame, DataFrame) and may
    be plain functions or coroutines. A handler that raises is logged and the
    remaining handlers still run.
    """

    def __init__(
        self,
        config: Optional[MultiplexerConfig] = None,
        connector: Optional[Connector] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or MultiplexerConfig()
        self._connector = connector or self._connect_aiohttp
        self._metrics = metrics
        self._session: Optional[aiohttp.ClientSession] = None

        # topic -> handlers (dict as an insertion-ordered set)
        self._registry: Dict[str, Dict[Handler, None]] = {}

        self._state = ConnectionState.DISCONNECTED
        self._endpoint_index = 0
        self._ws: Optional[Any] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._send_failed = False
        self._connected = asyncio.Event()

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = StreamStats()

    # === Properties ===

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def current_endpoint(self) -> str:
        return self.config.endpoints[self._endpoint_index]

    @property
    def topics(self) -> List[str]:
        """Topics that currently have at least one handler."""
        return list(self._registry)

    def handler_count(self, topic: str) -> int:
        return len(self._registry.get(topic, ()))

    # === Subscriptions ===

    def subscribe(self, topics: Union[str, Iterable[str]], handler: Handler) -> Unsubscribe:
        """
        Register ``handler`` for each of ``topics``.

        Topics not yet on the wire are subscribed with one frame if connected;
        otherwise they go out with the full set on the next connect.

        Returns:
            Idempotent callable that removes this registration
        """
        topic_list = [topics] if isinstance(topics, str) else list(dict.fromkeys(topics))
        added: List[str] = []
        for topic in topic_list:
            handlers = self._registry.get(topic)
            if handlers is None:
                handlers = self._registry[topic] = {}
                added.append(topic)
            handlers[handler] = None

        if added:
            logger.debug(f"Subscribing {added}")
            if self.is_connected:
                self._send(encode_subscribe(added))

        active = True

        def unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            self._remove(topic_list, handler)

        return unsubscribe

    def _remove(self, topics: List[str], handler: Handler) -> None:
        emptied: List[str] = []
        for topic in topics:
            handlers = self._registry.get(topic)
            if handlers is None or handler not in handlers:
                continue
            del handlers[handler]
            if not handlers:
                del self._registry[topic]
                emptied.append(topic)

        if emptied:
            logger.debug(f"Unsubscribing {emptied}")
            if self.is_connected:
                self._send(encode_unsubscribe(emptied))

    # === Outbound ===

    def _send(self, text: str) -> None:
        if self._outbox is not None:
            self._outbox.put_nowait(text)

    async def _writer(self, ws: Any, outbox: asyncio.Queue) -> None:
        while True:
            text = await outbox.get()
            try:
                await ws.send_str(text)
            except Exception as e:
                if ws.closed:
                    # Peer already closed; the reader reports its code
                    return
                # Closing ends the reader, so the session reconnects and resubscribes
                logger.warning(f"Send failed, dropping connection: {e}")
                self._send_failed = True
                await ws.close(code=aiohttp.WSCloseCode.INTERNAL_ERROR)
                return

    async def _heartbeat(self) -> None:
        interval = self.config.heartbeat_interval_s
        while True:
            await asyncio.sleep(interval)
            self._send(encode_ping())

    # === Inbound ===

    async def _handle_raw(self, raw: Union[str, bytes]) -> None:
        self._stats.messages_received += 1
        self._stats.bytes_received += len(raw)
        self._stats.last_message_time = int(time.time() * 1000)
        if self._metrics:
            self._metrics.record_event("frames")

        try:
            frame = parse_frame(raw)
        except FrameError as e:
            self._stats.parse_errors += 1
            if self._metrics:
                self._metrics.increment("parse_errors")
            logger.warning(f"Dropping malformed frame: {e}")
            return

        if isinstance(frame, PongFrame):
            return
        if isinstance(frame, ErrorFrame):
            self._stats.error_count += 1
            logger.error(f"Stream error ({frame.op or 'unknown op'}): {frame.ret_msg}")
            return
        if isinstance(frame, CommandAck):
            logger.debug(f"{frame.op} acknowledged")
            return

        await self._dispatch(frame)

    async def _dispatch(self, frame: TopicFrame) -> None:
        handlers = list(self._registry.get(frame.topic, ()))
        for handler in handlers:
            try:
                result = handler(frame)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self._stats.handler_errors += 1
                logger.error(f"Handler error on {frame.topic}: {e}", exc_info=True)
        if handlers:
            self._stats.frames_dispatched += 1

    # === Connection ===

    async def _connect_aiohttp(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=None, connect=self.config.connect_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return await self._session.ws_connect(
            url,
            receive_timeout=self.config.receive_timeout_s,
            autoping=True,
        )

    async def _serve(self, ws: Any) -> Optional[int]:
        """Run one connected session. Returns the close code, if any."""
        self._ws = ws
        self._outbox = asyncio.Queue()
        self._send_failed = False
        self._state = ConnectionState.CONNECTED
        self._stats.connect_count += 1
        logger.info(f"Connected to {self.current_endpoint}")

        if self._registry:
            self._send(encode_subscribe(self.topics))

        tasks = [
            asyncio.create_task(self._writer(ws, self._outbox)),
            asyncio.create_task(self._heartbeat()),
        ]
        self._connected.set()

        try:
            async for msg in ws:
                if not self._running:
                    break
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._handle_raw(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._stats.error_count += 1
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.error_count += 1
            logger.error(f"Stream error: {e}")
        finally:
            self._connected.clear()
            self._state = ConnectionState.DISCONNECTED
            self._outbox = None
            self._ws = None
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        # A broken transport counts as abnormal whatever code the close carried
        close_code = ABNORMAL_CLOSURE if self._send_failed else ws.close_code
        if not ws.closed:
            await ws.close()
        return close_code

    def _handle_disconnect(self, close_code: Optional[int]) -> None:
        code = ABNORMAL_CLOSURE if close_code is None else close_code
        self._stats.last_close_code = code
        if not self._running:
            return

        if code in self.config.failover_close_codes:
            previous = self.current_endpoint
            self._endpoint_index = (self._endpoint_index + 1) % len(self.config.endpoints)
            self._stats.failover_count += 1
            if self._metrics:
                self._metrics.increment("failovers")
            logger.warning(
                f"Connection to {previous} closed with code {code}; "
                f"failing over to {self.current_endpoint}"
            )
        else:
            logger.info(f"Connection closed with code {code}")

    async def _run(self) -> None:
        """Connect, serve, and reconnect until stopped."""
        while self._running:
            url = self.current_endpoint
            self._state = ConnectionState.CONNECTING
            logger.info(f"Connecting to {url}")

            try:
                ws = await self._connector(url)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats.error_count += 1
                logger.error(f"Connect to {url} failed: {e}")
                self._state = ConnectionState.DISCONNECTED
                close_code = ABNORMAL_CLOSURE
            else:
                close_code = await self._serve(ws)

            self._handle_disconnect(close_code)
            if not self._running:
                break

            self._stats.reconnect_count += 1
            if self._metrics:
                self._metrics.increment("reconnections")
            await asyncio.sleep(self.config.reconnect_delay_s)

        self._state = ConnectionState.DISCONNECTED

    # === Lifecycle ===

    async def start(self) -> None:
        """Start the connection loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._running = False

        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._session:
            await self._session.close()
            self._session = None

        self._connected.clear()
        self._state = ConnectionState.DISCONNECTED

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the connection is up. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
