import asyncio
import inspect
from typing import Any, AsyncIterator, Iterator, Protocol

from .json import json
from .primitives import TPrimitive

DEFAULT_ENCODING: str = "utf8"
EOL: bytes = b"\r\n"
CHUNK_SIZE: int = 64_000


class Writable(Protocol):
	"""The writable side of a byte stream, see `transport.BodySink`."""

	def write(self, chunk: bytes) -> None:
		...

	def end(self, chunk: bytes | None = None) -> None:
		...

	def abort(self, error: BaseException) -> None:
		...

	async def drain(self) -> None:
		...


def asBytes(value: str | bytes | bytearray | memoryview | None) -> bytes:
	if isinstance(value, bytes):
		return value
	elif isinstance(value, bytearray) or isinstance(value, memoryview):
		return bytes(value)
	elif isinstance(value, str):
		return bytes(value, DEFAULT_ENCODING)
	elif value is None:
		return b""
	else:
		raise ValueError(f"Expected bytes or str, got: {value}")


def asWritable(value: str | bytes | bytearray | TPrimitive) -> bytes:
	if isinstance(value, bytes):
		return value
	elif isinstance(value, bytearray) or isinstance(value, memoryview):
		return bytes(value)
	elif isinstance(value, str):
		return value.encode(DEFAULT_ENCODING)
	else:
		return json(value)


def isStreamLike(value: Any) -> bool:
	"""Tells if the value can be piped: it has a `pipe` or `read` method,
	or it is an iterator or an async iterable."""
	if isinstance(value, (str, bytes, bytearray, memoryview)):
		return False
	return (
		callable(getattr(value, "pipe", None))
		or callable(getattr(value, "read", None))
		or isinstance(value, Iterator)
		or hasattr(value, "__aiter__")
	)


async def iterStream(source: Any, size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
	"""Iterates on the chunks of any stream-like value (see `isStreamLike`),
	awaiting reads when the source is asynchronous."""
	if hasattr(source, "__aiter__"):
		async for chunk in source:
			if chunk:
				yield asWritable(chunk)
	elif callable(getattr(source, "read", None)):
		while True:
			chunk = source.read(size)
			if inspect.isawaitable(chunk):
				chunk = await chunk
			if not chunk:
				break
			yield asWritable(chunk)
	else:
		for chunk in source:
			if chunk:
				yield asWritable(chunk)


async def copyStream(source: Any, sink: Writable) -> None:
	try:
		async for chunk in iterStream(source):
			sink.write(chunk)
			await sink.drain()
	except Exception as e:
		sink.abort(e)
	else:
		sink.end()


def pipe(source: Any, sink: Writable) -> "asyncio.Task[None] | None":
	"""Pipes the stream-like `source` into the `sink`, ending the sink once
	the source is exhausted. Sources exposing their own `pipe` are trusted
	to manage the sink, otherwise a task copies the chunks honouring the
	sink's flow control."""
	if callable(getattr(source, "pipe", None)):
		source.pipe(sink)
		return None
	else:
		return asyncio.ensure_future(copyStream(source, sink))


# EOF
