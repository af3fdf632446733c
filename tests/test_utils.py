import asyncio
import gzip
import io
import zlib
from dataclasses import dataclass
from datetime import date
from typing import NamedTuple

import pytest

from thenrequest import config
from thenrequest.transport import BodySink, ResponseBody
from thenrequest.utils import logging
from thenrequest.utils.codec import DeflateDecoder, GZipDecoder, decoder, encodeChunk
from thenrequest.utils.json import json


def decode(transform, data: bytes, size: int = 3) -> bytes:
	res = b"".join(
		transform.feed(data[i : i + size]) for i in range(0, len(data), size)
	)
	return res + transform.flush()


def test_gzip_decoder():
	data = gzip.compress(b"compressed " * 20)
	assert decode(GZipDecoder(), data) == b"compressed " * 20


def test_deflate_decoder():
	wrapped = zlib.compress(b"deflated")
	assert decode(DeflateDecoder(), wrapped) == b"deflated"
	compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
	raw = compressor.compress(b"raw deflate") + compressor.flush()
	assert decode(DeflateDecoder(), raw, size=len(raw)) == b"raw deflate"


def test_decoder_selection():
	assert isinstance(decoder("GZIP"), GZipDecoder)
	assert isinstance(decoder("deflate"), DeflateDecoder)
	assert decoder("br") is None
	assert decoder(None) is None


def test_encode_chunk():
	assert encodeChunk(b"a" * 26) == b"1A\r\n" + b"a" * 26 + b"\r\n"
	assert encodeChunk(b"") == b"0\r\n\r\n"


def test_json():
	class Point(NamedTuple):
		x: int
		y: int

	@dataclass
	class Event:
		name: str
		day: date

	assert json({"a": [1, 2], "b": None}) == b'{"a":[1,2],"b":null}'
	assert json(Point(1, 2)) == b'{"x":1,"y":2}'
	assert json(Event("é", date(2024, 1, 2))) == '{"name":"é","day":"2024-01-02"}'.encode()


def test_sink_flow_control():
	async def main():
		sink = BodySink(highWaterMark=2)
		for chunk in (b"a", b"b", b"c"):
			sink.write(chunk)
		assert not sink.drained.is_set()
		assert await sink.read() == b"a"
		assert sink.drained.is_set()
		sink.end(b"d")
		with pytest.raises(RuntimeError):
			sink.write(b"e")
		return await sink.load()

	assert asyncio.run(main()) == b"bcd"


def test_sink_abort():
	async def main():
		sink = BodySink()
		sink.write(b"a")
		sink.abort(ValueError("aborted"))
		# Ending an aborted sink has no effect
		sink.end()
		assert [_ async for _ in sink] == [b"a"]

	with pytest.raises(ValueError):
		asyncio.run(main())


def test_sink_abort_releases_writers():
	async def main():
		sink = BodySink(highWaterMark=1)
		sink.write(b"a")
		sink.write(b"b")
		waiting = asyncio.ensure_future(sink.drain())
		await asyncio.sleep(0)
		assert not waiting.done()
		error = OSError("gone")
		sink.abort(error)
		with pytest.raises(RuntimeError) as e:
			await waiting
		assert e.value.__cause__ is error
		with pytest.raises(RuntimeError):
			sink.write(b"c")

	asyncio.run(main())


def test_ended_sink_abort_releases_writers():
	async def main():
		sink = BodySink()
		sink.end(b"done")
		sink.abort(OSError("gone"))
		with pytest.raises(RuntimeError):
			await sink.drain()
		# What was written before is still readable
		assert await sink.read() == b"done"

	asyncio.run(main())


def test_response_body_is_read_once():
	async def main():
		body = ResponseBody.FromBytes(b"once")
		assert await body.load() == b"once"
		with pytest.raises(RuntimeError):
			await body.load()
		assert await ResponseBody.FromBytes(b"").load() is None

	asyncio.run(main())


def test_log_threshold(monkeypatch):
	out = io.StringIO()
	monkeypatch.setattr(logging, "ERR", out)
	token = logging.LogThreshold.set(logging.LogLevel.Warning)
	try:
		logging.debug("Hidden entry")
		entry = logging.warning("Shown entry", Count=2)
		logging.event("retry", "http://x/", Attempt=1)
	finally:
		logging.LogThreshold.reset(token)
	err = out.getvalue()
	assert "Hidden" not in err
	assert "Shown entry" in err
	assert "retry" not in err
	assert entry.level == logging.LogLevel.Warning
	assert entry.context == {"Count": 2}
	assert entry.origin == "thenrequest"


def test_log_level_parse():
	assert logging.LogLevel.Parse("DEBUG", logging.LogLevel.Info) == logging.LogLevel.Debug
	assert logging.LogLevel.Parse(None, logging.LogLevel.Info) == logging.LogLevel.Info
	assert logging.LogLevel.Parse("loud", logging.LogLevel.Error) == logging.LogLevel.Error


def test_log_threshold_from_config():
	assert logging.LogThreshold.get() == logging.LogLevel.Parse(
		config.LOG_LEVEL, logging.LogLevel.Warning
	)


# EOF
