"""
Tests for stream frame decoding and encoding.
"""

import json

import pytest

from conftest import BASE_MS, kline_message
from volradar.stream.frames import (
    CommandAck,
    DataFrame,
    ErrorFrame,
    FrameError,
    KlineFrame,
    PongFrame,
    TickerFrame,
    encode_ping,
    encode_subscribe,
    encode_unsubscribe,
    kline_topic,
    parse_frame,
    ticker_topic,
    topic_channel,
    topic_symbol,
)


class TestTopics:
    def test_builders(self):
        assert kline_topic("BTCUSDT") == "kline.1.BTCUSDT"
        assert kline_topic("BTCUSDT", "5") == "kline.5.BTCUSDT"
        assert ticker_topic("ETHUSDT") == "tickers.ETHUSDT"

    def test_parts(self):
        assert topic_channel("kline.1.BTCUSDT") == "kline"
        assert topic_symbol("kline.1.BTCUSDT") == "BTCUSDT"
        assert topic_symbol("tickers.ETHUSDT") == "ETHUSDT"


class TestDecoding:
    """Classification of inbound frames."""

    def test_kline(self):
        frame = parse_frame(json.dumps(kline_message("BTCUSDT", BASE_MS, 1234.5, 101.0, 100.0, True)))
        assert isinstance(frame, KlineFrame)
        assert frame.symbol == "BTCUSDT"
        assert frame.ts == BASE_MS + 1000
        bar = frame.bars[0]
        assert bar.start == BASE_MS
        assert bar.volume == pytest.approx(1234.5)
        assert bar.confirm is True
        assert bar.body_change_pct == pytest.approx(1.0)

    def test_malformed_kline_items_dropped(self):
        message = kline_message("BTCUSDT", BASE_MS, 10, 100.0)
        good = message["data"][0]
        message["data"] = [{"start": BASE_MS, "open": "x"}, good, "junk"]
        frame = parse_frame(json.dumps(message))
        assert len(frame.bars) == 1

    def test_ticker_snapshot_and_delta(self):
        raw = {
            "topic": "tickers.BTCUSDT",
            "type": "delta",
            "ts": BASE_MS,
            "data": {"symbol": "BTCUSDT", "lastPrice": "43000.5", "volume24h": ""},
        }
        frame = parse_frame(json.dumps(raw))
        assert isinstance(frame, TickerFrame)
        assert frame.snapshot is False
        assert frame.update.last_price == pytest.approx(43000.5)
        assert frame.update.volume_24h is None
        assert frame.update.price_24h_pcnt is None

    def test_ticker_payload_must_be_object(self):
        with pytest.raises(FrameError):
            parse_frame(json.dumps({"topic": "tickers.BTCUSDT", "data": [1, 2]}))

    def test_unknown_channel_passes_payload_through(self):
        frame = parse_frame(json.dumps({"topic": "publicTrade.BTCUSDT", "data": [{"p": "1"}]}))
        assert isinstance(frame, DataFrame)
        assert frame.payload == [{"p": "1"}]

    @pytest.mark.parametrize(
        "message",
        [
            {"op": "pong"},
            {"success": True, "ret_msg": "pong", "conn_id": "abc", "op": "ping"},
        ],
    )
    def test_pong(self, message):
        assert isinstance(parse_frame(json.dumps(message)), PongFrame)

    def test_command_ack(self):
        frame = parse_frame(json.dumps({"success": True, "ret_msg": "", "op": "subscribe", "conn_id": "c1"}))
        assert frame == CommandAck(op="subscribe", success=True, ret_msg="", conn_id="c1")

    def test_error(self):
        frame = parse_frame(json.dumps({"success": False, "ret_msg": "bad topic", "op": "subscribe"}))
        assert frame == ErrorFrame(ret_msg="bad topic", op="subscribe")

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"', '{"foo": 1}', b"\xff\xfe"])
    def test_malformed(self, raw):
        with pytest.raises(FrameError):
            parse_frame(raw)


class TestEncoding:
    def test_subscribe(self):
        assert json.loads(encode_subscribe(["kline.1.BTCUSDT", "tickers.BTCUSDT"])) == {
            "op": "subscribe",
            "args": ["kline.1.BTCUSDT", "tickers.BTCUSDT"],
        }

    def test_unsubscribe(self):
        assert json.loads(encode_unsubscribe(["kline.1.BTCUSDT"])) == {
            "op": "unsubscribe",
            "args": ["kline.1.BTCUSDT"],
        }

    def test_ping(self):
        assert json.loads(encode_ping()) == {"req_id": "hb", "op": "ping"}
