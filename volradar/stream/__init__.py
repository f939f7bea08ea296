"""Websocket transport: frame codec and the topic multiplexer."""

from .frames import (
    CommandAck,
    DataFrame,
    ErrorFrame,
    FrameError,
    KlineBar,
    KlineFrame,
    PongFrame,
    TickerFrame,
    TickerUpdate,
    kline_topic,
    parse_frame,
    ticker_topic,
    topic_symbol,
)
from .multiplexer import ConnectionState, StreamMultiplexer, StreamStats

__all__ = [
    "CommandAck",
    "ConnectionState",
    "DataFrame",
    "ErrorFrame",
    "FrameError",
    "KlineBar",
    "KlineFrame",
    "PongFrame",
    "StreamMultiplexer",
    "StreamStats",
    "TickerFrame",
    "TickerUpdate",
    "kline_topic",
    "parse_frame",
    "ticker_topic",
    "topic_symbol",
]
