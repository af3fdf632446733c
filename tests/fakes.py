import asyncio
import gzip
from typing import Any, AsyncIterator, NamedTuple

from thenrequest.model import BODYLESS_METHODS
from thenrequest.transport import (
	BodySink,
	ResponseBody,
	TCallback,
	Transport,
	TransportOptions,
	TransportResponse,
)

# --
# Test doubles: a transport that records what it is given, and a tiny
# HTTP/1.1 server to run the `BasicTransport` against.


class Call(NamedTuple):
	method: str
	url: str
	options: TransportOptions
	# The headers as they were when the transport was invoked
	headers: dict[str, Any]


class FakeTransport(Transport):
	"""Records the requests, reads the whole request body from the sink and
	responds with the given chunks."""

	def __init__(
		self,
		*,
		status: int = 200,
		chunks: list[bytes] | None = None,
		headers: dict[str, Any] | None = None,
		error: BaseException | None = None,
		respond: bool = True,
		streamError: BaseException | None = None,
		readBody: bool = True,
	):
		self.status = status
		self.chunks = [b"ok"] if chunks is None else chunks
		self.headers = headers or {}
		self.error = error
		self.respond = respond
		self.streamError = streamError
		self.readBody = readBody
		self.calls: list[Call] = []
		self.bodies: list[bytes | None] = []
		self.tasks: list[asyncio.Task[None]] = []

	def request(
		self,
		method: str,
		url: str,
		options: TransportOptions,
		callback: TCallback,
	) -> BodySink | None:
		self.calls.append(Call(method, url, options, options.headers.asDict()))
		sink = None if method in BODYLESS_METHODS else BodySink()
		self.tasks.append(asyncio.ensure_future(self.run(url, sink, callback)))
		return sink

	async def run(self, url: str, sink: BodySink | None, callback: TCallback) -> None:
		self.bodies.append(await sink.load() if sink and self.readBody else None)
		if self.error is not None:
			callback(self.error, None)
		elif not self.respond:
			callback(None, None)
		else:
			callback(
				None,
				TransportResponse(self.status, self.headers, ResponseBody(self.stream()), url),
			)

	async def stream(self) -> AsyncIterator[bytes]:
		for chunk in self.chunks:
			yield chunk
		if self.streamError is not None:
			raise self.streamError


class FakeForm:
	"""A form-like object that calls back with the given outcomes, in
	order, when asked for its length. With `later`, each outcome is
	given on its own loop iteration."""

	def __init__(
		self,
		*outcomes: tuple[Any, int | None],
		data: bytes = b"data",
		later: bool = False,
	):
		self.outcomes = outcomes
		self.data = data
		self.later = later
		self.piped: int = 0
		self.called: int = 0

	def getHeaders(self) -> dict[str, str]:
		return {"content-type": "multipart/form-data; boundary=fake"}

	def getLength(self, callback: Any) -> None:
		if not self.later:
			for error, length in self.outcomes:
				self.called += 1
				callback(error, length)
			return
		loop = asyncio.get_running_loop()

		def fire(index: int) -> None:
			if index < len(self.outcomes):
				self.called += 1
				callback(*self.outcomes[index])
				loop.call_soon(fire, index + 1)

		loop.call_soon(fire, 0)

	def pipe(self, sink: Any) -> None:
		self.piped += 1
		sink.end(self.data)


class PipeSource:
	"""A source that writes itself to the sink it is piped to."""

	def __init__(self, *chunks: bytes):
		self.chunks = chunks
		self.sinks: list[Any] = []

	def pipe(self, sink: Any) -> None:
		self.sinks.append(sink)
		for chunk in self.chunks:
			sink.write(chunk)
		sink.end()


class Recorded(NamedTuple):
	method: str
	target: str
	headers: dict[str, str]
	body: bytes


REASONS: dict[int, str] = {
	200: "OK",
	302: "Found",
	307: "Temporary Redirect",
	500: "Internal Server Error",
}


class TestServer:
	"""Serves a few fixed routes on localhost, recording the requests."""

	__test__ = False

	def __init__(self) -> None:
		self.requests: list[Recorded] = []
		self.hits: dict[str, int] = {}
		self.connections: int = 0
		self.server: asyncio.AbstractServer | None = None
		self.port: int = 0

	@property
	def url(self) -> str:
		return f"http://127.0.0.1:{self.port}"

	async def __aenter__(self) -> "TestServer":
		self.server = await asyncio.start_server(self.handle, "127.0.0.1", 0)
		self.port = self.server.sockets[0].getsockname()[1]
		return self

	async def __aexit__(self, *args: Any) -> None:
		if self.server:
			self.server.close()

	async def handle(
		self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
	) -> None:
		self.connections += 1
		try:
			while line := await reader.readline():
				method, target, _ = line.decode("latin-1").split(" ", 2)
				headers: dict[str, str] = {}
				while (h := await reader.readline()) not in (b"\r\n", b"\n", b""):
					k, _, v = h.decode("latin-1").partition(":")
					headers[k.strip().lower()] = v.strip()
				if headers.get("transfer-encoding") == "chunked":
					body = b""
					while size := int((await reader.readline()).strip(), 16):
						body += await reader.readexactly(size)
						await reader.readexactly(2)
					await reader.readline()
				else:
					body = await reader.readexactly(int(headers.get("content-length", "0")))
				self.requests.append(Recorded(method, target, headers, body))
				path = target.split("?", 1)[0]
				self.hits[path] = self.hits.get(path, 0) + 1
				keep = self.respond(writer, path, body, self.hits[path])
				await writer.drain()
				if not keep or headers.get("connection") == "close":
					break
		finally:
			writer.close()

	def reply(
		self,
		writer: asyncio.StreamWriter,
		status: int,
		body: bytes = b"",
		headers: dict[str, str] | None = None,
		length: bool = True,
	) -> None:
		lines = [f"HTTP/1.1 {status} {REASONS.get(status, 'Unknown')}"]
		for k, v in (headers or {}).items():
			lines.append(f"{k}: {v}")
		if length:
			lines.append(f"Content-Length: {len(body)}")
		writer.write(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body)

	def respond(
		self, writer: asyncio.StreamWriter, path: str, body: bytes, hits: int
	) -> bool:
		if path == "/echo":
			self.reply(writer, 200, body, {"Content-Type": "application/octet-stream"})
		elif path == "/chunked":
			writer.write(
				b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
				b"7\r\nHello, \r\n5\r\nWorld\r\n0\r\n\r\n"
			)
		elif path == "/gzip":
			self.reply(
				writer, 200, gzip.compress(b"hello gzip"), {"Content-Encoding": "gzip"}
			)
		elif path == "/redirect":
			self.reply(writer, 302, b"", {"Location": "/echo"})
		elif path == "/loop":
			self.reply(writer, 302, b"", {"Location": "/loop"})
		elif path == "/temporary":
			self.reply(writer, 307, b"", {"Location": "/echo"})
		elif path == "/close":
			self.reply(writer, 200, b"until close", {"Connection": "close"}, length=False)
			return False
		elif path == "/cached":
			self.reply(
				writer, 200, f"hit {hits}".encode(), {"Cache-Control": "max-age=60"}
			)
		elif path == "/flaky":
			if hits == 1:
				self.reply(writer, 500, b"fail")
			else:
				self.reply(writer, 200, b"ok")
		else:
			self.reply(writer, 200, b"")
		return True


# EOF
