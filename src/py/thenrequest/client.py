import asyncio
import re
import ssl
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, NamedTuple, TypeVar

from . import config
from .headers import Headers, THeaders
from .model import (
	BODYLESS_METHODS,
	ClientException,
	HTTPProcessingStatus,
)
from .transport import (
	BodySink,
	ResponseBody,
	TCallback,
	Transport,
	TransportOptions,
	TransportResponse,
)
from .utils.codec import decoder, encodeChunk
from .utils.io import CHUNK_SIZE
from .utils.logging import debug, event, warning
from .utils.uri import URI

ConnectionT = TypeVar("ConnectionT", bound="Connection")

# --
# A basic asyncio HTTP/1.1 transport, with optional connection pooling,
# redirects, retries, gzip decoding and an in-memory cache.

# -----------------------------------------------------------------------------
#
# SSL
#
# -----------------------------------------------------------------------------

SSL_CLIENT_CONTEXT: ssl.SSLContext = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
try:
	import certifi

	SSL_CLIENT_CONTEXT.load_verify_locations(certifi.where())
except ImportError:
	pass


# -----------------------------------------------------------------------------
#
# CONNECTIONS
#
# -----------------------------------------------------------------------------


class Target(NamedTuple):
	"""A host/port target, used as key for connection pools."""

	host: str
	port: int
	ssl: bool

	@staticmethod
	def FromURI(uri: URI) -> "Target":
		return Target(uri.host, uri.actualPort, uri.ssl)


CONNECTION_IDLE: float = 30.0


@dataclass
class Connection:
	"""Wraps an underlying HTTP(S) connection with its target."""

	target: Target
	reader: asyncio.StreamReader
	writer: asyncio.StreamWriter
	idle: float
	until: float | None

	def close(self: ConnectionT) -> ConnectionT:
		self.writer.close()
		self.until = None
		return self

	@property
	def isValid(self) -> bool:
		return (
			self.until is not None
			and time.monotonic() <= self.until
			and not self.reader.at_eof()
			and not self.writer.is_closing()
		)

	def touch(self: ConnectionT) -> ConnectionT:
		self.until = time.monotonic() + self.idle
		return self

	@staticmethod
	async def Make(
		target: Target,
		*,
		timeout: float | None = None,
		idle: float | None = None,
	) -> "Connection":
		reader, writer = await asyncio.wait_for(
			asyncio.open_connection(
				host=target.host,
				port=target.port,
				ssl=SSL_CLIENT_CONTEXT if target.ssl else None,
			),
			timeout=timeout,
		)
		idle = idle or CONNECTION_IDLE
		return Connection(
			target, reader, writer, idle=idle, until=time.monotonic() + idle
		)


class ConnectionPool:
	"""Keeps connections alive between requests, to be given as the
	`agent` option or to the `BasicTransport`."""

	def __init__(self, idle: float | None = None):
		self.connections: dict[Target, list[Connection]] = {}
		self.idle: float | None = idle

	def has(self, target: Target) -> bool:
		return any(_.isValid for _ in self.connections.get(target) or ())

	async def get(self, target: Target, *, timeout: float | None = None) -> Connection:
		"""Returns a valid pooled connection to the target, or a new one."""
		cxn = self.connections.get(target)
		while cxn:
			c = cxn.pop()
			if c.isValid:
				return c
			else:
				c.close()
		return await Connection.Make(target, timeout=timeout, idle=self.idle)

	def put(self, connection: Connection) -> None:
		"""Puts the connection back into the pool, it will be available
		as long as it is valid."""
		self.connections.setdefault(connection.target, []).append(connection.touch())

	def clean(self) -> "ConnectionPool":
		"""Closes and removes the connections that are not valid anymore."""
		for k in list(self.connections):
			valid: list[Connection] = []
			for c in self.connections[k]:
				if c.isValid:
					valid.append(c)
				else:
					c.close()
			if valid:
				self.connections[k] = valid
			else:
				del self.connections[k]
		return self

	def release(self) -> "ConnectionPool":
		"""Closes all the connections."""
		for cl in self.connections.values():
			while cl:
				cl.pop().close()
		self.connections.clear()
		return self

	def __enter__(self) -> "ConnectionPool":
		return self

	def __exit__(self, type: Any, value: Any, traceback: Any) -> None:
		self.release()


# -----------------------------------------------------------------------------
#
# CACHE
#
# -----------------------------------------------------------------------------


class CachedResponse(NamedTuple):
	statusCode: int
	headers: THeaders
	body: bytes
	url: str
	requestHeaders: THeaders
	stored: float


RE_MAX_AGE = re.compile(r"max-age=(\d+)")


def headerValue(headers: THeaders, name: str) -> str:
	value = headers.get(name)
	return ", ".join(value) if isinstance(value, list) else (value or "")


def canCache(res: TransportResponse) -> bool:
	cacheControl = headerValue(res.headers, "cache-control")
	return res.statusCode == 200 and not (
		"no-store" in cacheControl or "no-cache" in cacheControl
	)


def isMatch(requestHeaders: Headers, cached: CachedResponse) -> bool:
	"""Tells if the request matches the `Vary` headers of the cached
	response."""
	stored = Headers.Make(cached.requestHeaders)
	for name in headerValue(cached.headers, "vary").split(","):
		name = name.strip()
		if name == "*":
			return False
		elif name and requestHeaders.get(name) != stored.get(name):
			return False
	return True


def isExpired(cached: CachedResponse) -> bool:
	"""Responses without a `max-age` are always considered expired."""
	match = RE_MAX_AGE.search(headerValue(cached.headers, "cache-control"))
	return match is None or time.time() > cached.stored + int(match.group(1))


class MemoryCache:
	__slots__ = ["entries"]

	def __init__(self) -> None:
		self.entries: dict[str, CachedResponse] = {}

	def get(self, url: str) -> CachedResponse | None:
		return self.entries.get(url)

	def set(self, url: str, response: CachedResponse) -> None:
		self.entries[url] = response

	def delete(self, url: str) -> None:
		self.entries.pop(url, None)


# -----------------------------------------------------------------------------
#
# TRANSPORT
#
# -----------------------------------------------------------------------------

REDIRECT_STATUSES: frozenset[int] = frozenset((301, 302, 303, 307, 308))
NO_BODY_STATUSES: frozenset[int] = frozenset((204, 304))


def shouldRetry(
	retry: bool | Callable[..., bool] | None,
	error: BaseException | None,
	res: TransportResponse | None,
	attempt: int,
) -> bool:
	if callable(retry):
		return bool(retry(error, res, attempt))
	elif retry:
		return error is not None or (res is not None and res.statusCode >= 400)
	else:
		return False


def retryDelay(
	delay: float | Callable[..., float] | None,
	error: BaseException | None,
	res: TransportResponse | None,
	attempt: int,
) -> float:
	if callable(delay):
		return float(delay(error, res, attempt))
	return config.RETRY_DELAY if delay is None else float(delay)


class BasicTransport(Transport):
	"""Performs requests over asyncio streams. The memory cache is per
	transport instance, so requests must share a transport (see
	`request.Client`) to benefit from it."""

	def __init__(self, *, agent: ConnectionPool | None = None):
		self.agent: ConnectionPool | None = agent
		self.cache: MemoryCache = MemoryCache()
		self.tasks: set[asyncio.Task[None]] = set()

	def request(
		self,
		method: str,
		url: str,
		options: TransportOptions,
		callback: TCallback,
	) -> BodySink | None:
		sink: BodySink | None = None if method in BODYLESS_METHODS else BodySink()
		task = asyncio.ensure_future(self.run(method, url, options, sink, callback))
		self.tasks.add(task)
		task.add_done_callback(self.tasks.discard)
		return sink

	async def run(
		self,
		method: str,
		url: str,
		options: TransportOptions,
		sink: BodySink | None,
		callback: TCallback,
	) -> None:
		try:
			res = await self.perform(method, url, options, sink)
		except Exception as e:
			callback(e, None)
		else:
			callback(None, res)

	async def perform(
		self,
		method: str,
		url: str,
		options: TransportOptions,
		sink: BodySink | None,
	) -> TransportResponse:
		"""Performs the request, with caching and retries for requests
		without a body."""
		useCache = method == "GET" and options.cache is not None
		if useCache and options.cache != "memory":
			warning("Unsupported cache, only 'memory' is", Cache=options.cache)
			useCache = False
		if useCache:
			cached = self.cache.get(url)
			if cached and self.isFresh(cached, options):
				debug("Using cached response", URL=url)
				return TransportResponse(
					cached.statusCode,
					cached.headers,
					ResponseBody.FromBytes(cached.body),
					cached.url,
				)
		attempt: int = 0
		maxRetries = config.MAX_RETRIES if options.maxRetries is None else options.maxRetries
		while True:
			attempt += 1
			error: Exception | None = None
			res: TransportResponse | None = None
			try:
				res = await self.follow(method, URI.Parse(url), options, sink)
			except (OSError, ClientException) as e:
				error = e
			if (
				sink is None
				and attempt <= maxRetries
				and shouldRetry(options.retry, error, res, attempt)
			):
				if res is not None:
					# The body of the discarded response is drained
					await res.body.load()
				delay = retryDelay(options.retryDelay, error, res, attempt)
				event("retry", url, Attempt=attempt, Delay=delay)
				await asyncio.sleep(delay)
			elif error is not None:
				raise error
			elif res is not None:
				break
		return self.caching(url, options, res) if useCache else res

	def isFresh(self, cached: CachedResponse, options: TransportOptions) -> bool:
		match = isMatch(options.headers, cached)
		if options.isMatch:
			match = options.isMatch(options.headers, cached, match)
		expired = isExpired(cached)
		if options.isExpired:
			expired = options.isExpired(cached, expired)
		return bool(match and not expired)

	def caching(
		self, url: str, options: TransportOptions, res: TransportResponse
	) -> TransportResponse:
		"""Returns the response with a body that stores the response in the
		cache once it has been fully read."""
		allowed = canCache(res)
		if options.canCache:
			allowed = options.canCache(res, allowed)
		if not allowed:
			return res

		async def stream() -> AsyncIterator[bytes]:
			chunks: list[bytes] = []
			async for chunk in res.body:
				chunks.append(chunk)
				yield chunk
			self.cache.set(
				url,
				CachedResponse(
					res.statusCode,
					res.headers,
					b"".join(chunks),
					res.url,
					options.headers.asDict(),
					time.time(),
				),
			)

		return res._replace(body=ResponseBody(stream()))

	async def follow(
		self,
		method: str,
		uri: URI,
		options: TransportOptions,
		sink: BodySink | None,
	) -> TransportResponse:
		"""Performs the exchange, following redirects if enabled."""
		headers: Headers = options.headers
		redirects: int = 0
		maxRedirects = (
			config.MAX_REDIRECTS if options.maxRedirects is None else options.maxRedirects
		)
		timeout = options.timeout if options.timeout is not None else config.TIMEOUT
		while True:
			try:
				res = await asyncio.wait_for(
					self.exchange(method, uri, headers, sink, options),
					timeout=timeout,
				)
			except asyncio.TimeoutError:
				raise ClientException(
					HTTPProcessingStatus.Timeout, f"no response after {timeout}s"
				)
			location = headerValue(res.headers, "location")
			if (
				not options.followRedirects
				or res.statusCode not in REDIRECT_STATUSES
				or not location
				# The body was streamed, so it can't be sent again
				or (res.statusCode in (307, 308) and sink is not None)
			):
				return res
			redirects += 1
			if redirects > maxRedirects:
				raise ClientException(
					HTTPProcessingStatus.TooManyRedirects, f"more than {maxRedirects}"
				)
			await res.body.load()
			target = uri.resolve(location)
			event("redirect", str(target), Status=res.statusCode, From=str(uri))
			if res.statusCode in (301, 302, 303):
				method = "GET"
				sink = None
			# Only the allowed headers are sent again
			headers = Headers()
			for name in options.allowRedirectHeaders or ():
				if (value := options.headers.get(name)) is not None:
					headers.set(name, value)
			uri = target

	async def exchange(
		self,
		method: str,
		uri: URI,
		headers: Headers,
		sink: BodySink | None,
		options: TransportOptions,
	) -> TransportResponse:
		"""Sends the request and reads the response head, the response
		body is then streamed."""
		target = Target.FromURI(uri)
		agent: ConnectionPool | None = options.agent or self.agent
		cxn = await (
			agent.get(target, timeout=options.socketTimeout)
			if agent
			else Connection.Make(target, timeout=options.socketTimeout)
		)
		try:
			head = Headers.Make(headers)
			if not head.has("Host"):
				head.set("Host", uri.authority)
			if options.gzip and not head.has("Accept-Encoding"):
				head.set("Accept-Encoding", "gzip, deflate")
			chunked: bool = sink is not None and not head.has("Content-Length")
			if chunked:
				head.set("Transfer-Encoding", "chunked")
			if not head.has("Connection"):
				head.set("Connection", "keep-alive" if agent else "close")
			lines: list[str] = [f"{method} {uri.target} HTTP/1.1"]
			for k, v in head.items():
				for value in v if isinstance(v, list) else (v,):
					lines.append(f"{k}: {value}")
			cxn.writer.write(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))
			if sink is not None:
				async for chunk in sink:
					cxn.writer.write(encodeChunk(chunk) if chunked else chunk)
					await cxn.writer.drain()
				if chunked:
					cxn.writer.write(encodeChunk(b""))
			await cxn.writer.drain()
			status, resHeaders = await self.readHead(cxn, options.socketTimeout)
		except BaseException:
			cxn.close()
			raise
		return TransportResponse(
			statusCode=status,
			headers=resHeaders,
			body=ResponseBody(
				self.readBody(cxn, method, status, resHeaders, options, agent)
			),
			url=str(uri),
		)

	async def readLine(self, cxn: Connection, timeout: float | None) -> str:
		try:
			line = await asyncio.wait_for(cxn.reader.readline(), timeout=timeout)
		except asyncio.TimeoutError:
			raise ClientException(HTTPProcessingStatus.Timeout, "socket timeout")
		if not line:
			raise ClientException(HTTPProcessingStatus.NoData)
		return line.decode("latin-1").rstrip("\r\n")

	async def readHead(
		self, cxn: Connection, timeout: float | None
	) -> tuple[int, THeaders]:
		"""Reads the status line and headers, skipping interim (1xx)
		responses. Header names are lower-cased."""
		while True:
			line = await self.readLine(cxn, timeout)
			parts = line.split(" ", 2)
			if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
				raise ClientException(HTTPProcessingStatus.BadFormat, line)
			status = int(parts[1])
			headers: THeaders = {}
			while line := await self.readLine(cxn, timeout):
				name, sep, value = line.partition(":")
				if not sep:
					raise ClientException(HTTPProcessingStatus.BadFormat, line)
				name = name.strip().lower()
				value = value.strip()
				existing = headers.get(name)
				if existing is None:
					headers[name] = [value] if name == "set-cookie" else value
				elif isinstance(existing, list):
					existing.append(value)
				else:
					headers[name] = f"{existing}, {value}"
			if status >= 200 or status == 101:
				return status, headers

	async def readBody(
		self,
		cxn: Connection,
		method: str,
		status: int,
		headers: THeaders,
		options: TransportOptions,
		agent: ConnectionPool | None,
	) -> AsyncIterator[bytes]:
		"""Streams the response body, decoding it if needed. The connection
		goes back to the agent when the body was fully read and the server
		keeps it alive."""
		timeout = options.socketTimeout
		transform = (
			decoder(headerValue(headers, "content-encoding")) if options.gzip else None
		)
		reusable: bool = headerValue(headers, "connection").lower() != "close"
		try:
			if method == "HEAD" or status in NO_BODY_STATUSES or status < 200:
				chunks: AsyncIterator[bytes] = self.readNothing()
			elif "chunked" in headerValue(headers, "transfer-encoding").lower():
				chunks = self.readChunked(cxn, timeout)
			elif (length := headerValue(headers, "content-length")).isdigit():
				chunks = self.readLength(cxn, int(length), timeout)
			else:
				reusable = False
				chunks = self.readUntilClose(cxn, timeout)
			async for chunk in chunks:
				if transform:
					chunk = transform.feed(chunk)
				if chunk:
					yield chunk
			if transform and (rest := transform.flush()):
				yield rest
		except asyncio.IncompleteReadError:
			cxn.close()
			raise ClientException(HTTPProcessingStatus.NoData, "incomplete body")
		except BaseException:
			cxn.close()
			raise
		if agent and reusable:
			agent.put(cxn)
		else:
			cxn.close()

	async def readNothing(self) -> AsyncIterator[bytes]:
		return
		yield b""

	async def readLength(
		self, cxn: Connection, length: int, timeout: float | None
	) -> AsyncIterator[bytes]:
		left = length
		while left > 0:
			chunk = await self.read(cxn.reader.read(min(left, CHUNK_SIZE)), timeout)
			if not chunk:
				raise asyncio.IncompleteReadError(b"", left)
			left -= len(chunk)
			yield chunk

	async def readChunked(
		self, cxn: Connection, timeout: float | None
	) -> AsyncIterator[bytes]:
		while True:
			line = await self.readLine(cxn, timeout)
			try:
				size = int(line.split(";", 1)[0].strip(), 16)
			except ValueError:
				raise ClientException(HTTPProcessingStatus.BadFormat, line)
			if size == 0:
				# Trailers end with an empty line
				while await self.readLine(cxn, timeout):
					pass
				return
			yield await self.read(cxn.reader.readexactly(size), timeout)
			await self.read(cxn.reader.readexactly(2), timeout)

	async def readUntilClose(
		self, cxn: Connection, timeout: float | None
	) -> AsyncIterator[bytes]:
		while chunk := await self.read(cxn.reader.read(CHUNK_SIZE), timeout):
			yield chunk

	async def read(self, reading: Any, timeout: float | None) -> bytes:
		try:
			return bytes(await asyncio.wait_for(reading, timeout=timeout))
		except asyncio.TimeoutError:
			raise ClientException(HTTPProcessingStatus.Timeout, "socket timeout")


# EOF
