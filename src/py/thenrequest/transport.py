import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, NamedTuple, TypeAlias

from mypy_extensions import mypyc_attr

from .headers import Headers, THeaders
from .utils.io import asBytes

# --
# The interface between the request dispatch and the transport that performs
# the actual I/O. The transport receives a fully resolved request, returns
# a sink to write the body into, and calls back with a streaming response.


class TransportOptions(NamedTuple):
	"""The resolved options given to the transport."""

	headers: Headers
	allowRedirectHeaders: list[str] | None = None
	followRedirects: bool = True
	maxRedirects: int | None = None
	gzip: bool = True
	cache: str | None = None
	agent: Any = None
	timeout: float | None = None
	socketTimeout: float | None = None
	retry: Any = None
	retryDelay: Any = None
	maxRetries: int | None = None
	isMatch: Callable[..., bool] | None = None
	isExpired: Callable[..., bool] | None = None
	canCache: Callable[..., bool] | None = None


# -----------------------------------------------------------------------------
#
# REQUEST BODY SINK
#
# -----------------------------------------------------------------------------


class StreamControl(NamedTuple):
	name: str


END_OF_STREAM: StreamControl = StreamControl("end")


class BodySink:
	"""The writable end of a request body. Producers `write()` chunks and
	`end()` or `abort()` the stream, the transport reads the chunks back
	with `read()`. Writers should `await drain()` to respect flow control.
	Once aborted, by either side, writing or draining raises."""

	__slots__ = ["queue", "isEnded", "highWaterMark", "drained", "error"]

	def __init__(self, highWaterMark: int = 16) -> None:
		self.queue: asyncio.Queue[bytes | StreamControl | BaseException] = (
			asyncio.Queue()
		)
		self.isEnded: bool = False
		self.highWaterMark: int = highWaterMark
		self.drained: asyncio.Event = asyncio.Event()
		self.drained.set()
		self.error: BaseException | None = None

	def write(self, chunk: bytes) -> None:
		if self.error is not None:
			raise RuntimeError("Cannot write to an aborted body sink") from self.error
		if self.isEnded:
			raise RuntimeError("Cannot write to an ended body sink")
		if chunk:
			self.queue.put_nowait(asBytes(chunk))
			if self.queue.qsize() > self.highWaterMark:
				self.drained.clear()

	def end(self, chunk: bytes | None = None) -> None:
		if self.isEnded:
			return
		if chunk:
			self.write(chunk)
		self.isEnded = True
		self.queue.put_nowait(END_OF_STREAM)

	def abort(self, error: BaseException) -> None:
		if self.error is None:
			self.error = error
			# Writers waiting for a drain are released
			self.drained.set()
		if self.isEnded:
			return
		self.isEnded = True
		self.queue.put_nowait(error)

	async def drain(self) -> None:
		await self.drained.wait()
		if self.error is not None:
			raise RuntimeError("Body sink was aborted") from self.error

	async def read(self) -> bytes | None:
		"""Returns the next chunk, or `None` once the sink is ended. Raises
		the error the sink was aborted with."""
		item = await self.queue.get()
		if self.queue.qsize() <= self.highWaterMark:
			self.drained.set()
		if isinstance(item, BaseException):
			raise item
		elif isinstance(item, StreamControl):
			return None
		else:
			return item

	async def load(self) -> bytes:
		"""Reads the whole body."""
		res = bytearray()
		while (chunk := await self.read()) is not None:
			res += chunk
		return bytes(res)

	def __aiter__(self) -> AsyncIterator[bytes]:
		return self._iter()

	async def _iter(self) -> AsyncIterator[bytes]:
		while (chunk := await self.read()) is not None:
			yield chunk


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class ResponseBody:
	"""The streaming body of a transport response, which can be iterated
	on only once."""

	__slots__ = ["stream", "isConsumed"]

	@staticmethod
	def FromBytes(data: bytes) -> "ResponseBody":
		async def stream() -> AsyncIterator[bytes]:
			yield data

		return ResponseBody(stream())

	def __init__(self, stream: AsyncIterator[bytes]):
		self.stream: AsyncIterator[bytes] = stream
		self.isConsumed: bool = False

	def __aiter__(self) -> AsyncIterator[bytes]:
		if self.isConsumed:
			raise RuntimeError("Response body was already consumed")
		self.isConsumed = True
		return self.stream.__aiter__()

	async def load(self) -> bytes | None:
		"""Loads the whole body, returns `None` when the stream produced
		no data."""
		chunks: list[bytes] = [_ async for _ in self if _]
		return b"".join(chunks) if chunks else None


class TransportResponse(NamedTuple):
	statusCode: int
	headers: THeaders
	body: ResponseBody
	# The effective URL, after redirects
	url: str


TCallback: TypeAlias = Callable[
	[BaseException | None, TransportResponse | None], None
]


@mypyc_attr(allow_interpreted_subclasses=True)
class Transport(ABC):
	"""Performs the actual HTTP exchange."""

	@abstractmethod
	def request(
		self,
		method: str,
		url: str,
		options: TransportOptions,
		callback: TCallback,
	) -> BodySink | None:
		"""Starts the request and returns the sink the request body is to be
		written to (if the method carries one). The `callback` is called
		exactly once, with either an error or the response."""


# EOF
