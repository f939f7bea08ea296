"""
Wire frames for the Bybit v5 public stream.

Inbound JSON is parsed once at ingress into one of a closed set of frame
types; anything else raises FrameError. Numeric fields arrive as strings and
are converted here. A data item with a missing or non-numeric required
field is dropped rather than passed on half-parsed.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

PING_REQ_ID = "hb"


class FrameError(ValueError):
    """Raised for frames that are not valid JSON or not a known shape."""


# =============================================================================
# TOPICS
# =============================================================================


def kline_topic(symbol: str, interval: str = "1") -> str:
    return f"kline.{interval}.{symbol}"


def ticker_topic(symbol: str) -> str:
    return f"tickers.{symbol}"


def topic_channel(topic: str) -> str:
    return topic.split(".", 1)[0]


def topic_symbol(topic: str) -> str:
    """kline.1.BTCUSDT -> BTCUSDT, tickers.ETHUSDT -> ETHUSDT"""
    return topic.rsplit(".", 1)[-1]


# =============================================================================
# FRAME TYPES
# =============================================================================


@dataclass(slots=True)
class KlineBar:
    start: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    confirm: bool = False
    end: Optional[int] = None

    @property
    def body_change_pct(self) -> float:
        """Close relative to open, in percent."""
        return (self.close - self.open) / self.open * 100 if self.open else 0.0


@dataclass(slots=True)
class TickerUpdate:
    symbol: str
    last_price: Optional[float] = None
    price_24h_pcnt: Optional[float] = None
    high_price_24h: Optional[float] = None
    low_price_24h: Optional[float] = None
    volume_24h: Optional[float] = None


@dataclass(frozen=True)
class PongFrame:
    pass


@dataclass(frozen=True)
class CommandAck:
    op: str
    success: bool = True
    ret_msg: str = ""
    conn_id: Optional[str] = None


@dataclass(frozen=True)
class ErrorFrame:
    ret_msg: str
    op: Optional[str] = None


@dataclass(frozen=True)
class KlineFrame:
    topic: str
    bars: Tuple[KlineBar, ...]
    ts: Optional[int] = None

    @property
    def symbol(self) -> str:
        return topic_symbol(self.topic)


@dataclass(frozen=True)
class TickerFrame:
    topic: str
    update: TickerUpdate
    snapshot: bool = True
    ts: Optional[int] = None

    @property
    def symbol(self) -> str:
        return topic_symbol(self.topic)


@dataclass(frozen=True)
class DataFrame:
    """Data on a channel without a typed decoder. Payload is passed through."""

    topic: str
    payload: Any = field(default=None)


TopicFrame = Union[KlineFrame, TickerFrame, DataFrame]
Frame = Union[PongFrame, CommandAck, ErrorFrame, KlineFrame, TickerFrame, DataFrame]


# =============================================================================
# DECODING
# =============================================================================


def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not finite: {value!r}")
    return number


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return _number(value)
    except (TypeError, ValueError):
        return None


def _items(data: Any) -> List[Dict[str, Any]]:
    items = data if isinstance(data, list) else [data]
    return [item for item in items if isinstance(item, dict)]


def parse_kline_bar(item: Dict[str, Any]) -> KlineBar:
    """Raises ValueError/KeyError/TypeError on a malformed item."""
    return KlineBar(
        start=int(_number(item["start"])),
        open=_number(item["open"]),
        high=_number(item["high"]),
        low=_number(item["low"]),
        close=_number(item["close"]),
        volume=_number(item["volume"]),
        confirm=bool(item.get("confirm", False)),
        end=int(_number(item["end"])) if item.get("end") is not None else None,
    )


def _decode_kline(topic: str, data: Any, ts: Optional[int]) -> KlineFrame:
    bars = []
    for item in _items(data):
        try:
            bars.append(parse_kline_bar(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Dropping malformed kline item on {topic}: {e}")
    return KlineFrame(topic=topic, bars=tuple(bars), ts=ts)


def _decode_ticker(topic: str, data: Any, frame_type: Optional[str], ts: Optional[int]) -> TickerFrame:
    if not isinstance(data, dict):
        raise FrameError(f"ticker payload on {topic} is not an object")
    update = TickerUpdate(
        symbol=str(data.get("symbol") or topic_symbol(topic)),
        last_price=_optional_number(data.get("lastPrice")),
        price_24h_pcnt=_optional_number(data.get("price24hPcnt")),
        high_price_24h=_optional_number(data.get("highPrice24h")),
        low_price_24h=_optional_number(data.get("lowPrice24h")),
        volume_24h=_optional_number(data.get("volume24h")),
    )
    return TickerFrame(topic=topic, update=update, snapshot=frame_type != "delta", ts=ts)


def decode_frame(message: Any) -> Frame:
    """Classify an already-decoded JSON value."""
    if not isinstance(message, dict):
        raise FrameError(f"expected a JSON object, got {type(message).__name__}")

    op = message.get("op")
    if op == "pong" or message.get("ret_msg") == "pong":
        return PongFrame()

    if message.get("success") is False:
        return ErrorFrame(ret_msg=str(message.get("ret_msg") or "unknown error"), op=op)

    topic = message.get("topic")
    if isinstance(topic, str) and topic and message.get("data") is not None:
        data = message["data"]
        ts = message.get("ts")
        ts = int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else None
        channel = topic_channel(topic)
        if channel == "kline":
            return _decode_kline(topic, data, ts)
        if channel == "tickers":
            return _decode_ticker(topic, data, message.get("type"), ts)
        return DataFrame(topic=topic, payload=data)

    if isinstance(op, str):
        return CommandAck(
            op=op,
            success=bool(message.get("success", True)),
            ret_msg=str(message.get("ret_msg", "")),
            conn_id=message.get("conn_id"),
        )

    raise FrameError(f"unrecognized frame with keys {sorted(message)}")


def parse_frame(raw: Union[str, bytes]) -> Frame:
    """Parse one raw websocket message."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise FrameError(f"invalid JSON: {e}") from e
    return decode_frame(message)


# =============================================================================
# ENCODING
# =============================================================================


def encode_subscribe(topics: Iterable[str]) -> str:
    return json.dumps({"op": "subscribe", "args": list(topics)})


def encode_unsubscribe(topics: Iterable[str]) -> str:
    return json.dumps({"op": "unsubscribe", "args": list(topics)})


def encode_ping() -> str:
    return json.dumps({"req_id": PING_REQ_ID, "op": "ping"})
