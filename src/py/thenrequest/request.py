import asyncio
from typing import Any, Coroutine, Generator, Mapping

from .body import NormalizedBody, selectBody
from .client import BasicTransport
from .headers import Headers, mergeHeaders
from .model import (
	BODYLESS_METHODS,
	BodyNotAllowedError,
	NoResponseError,
	RequestOptions,
	Response,
	ResponseStreamError,
)
from .transport import Transport, TransportOptions, TransportResponse
from .utils.logging import debug, warning
from .utils.uri import mergeQuery

# --
# The dispatch of a request: the body is normalized and its headers resolved
# before the transport is invoked, then the streamed response is buffered.


class ResponseFuture:
	"""The awaitable result of a request. The request starts right away
	when there is a running event loop, or when first awaited otherwise,
	and it settles only once: awaiting again gives the same outcome."""

	__slots__ = ["coroutine", "task"]

	def __init__(self, coroutine: Coroutine[Any, Any, Response]):
		self.coroutine: Coroutine[Any, Any, Response] | None = coroutine
		self.task: asyncio.Future[Response] | None = None
		try:
			asyncio.get_running_loop()
		except RuntimeError:
			pass
		else:
			self.start()

	def start(self) -> "asyncio.Future[Response]":
		if self.task is None:
			assert self.coroutine is not None  # nosec: B101
			self.task = asyncio.ensure_future(self.coroutine)
			self.coroutine = None
		return self.task

	def __del__(self) -> None:
		# A request that was never started is dropped without a warning
		if self.coroutine is not None:
			self.coroutine.close()

	async def getBody(self, encoding: str | None = None) -> bytes | str:
		"""Returns the response body, see `Response.getBody`."""
		res: Response = await self
		return res.getBody(encoding)

	def __await__(self) -> Generator[Any, None, Response]:
		return self.start().__await__()


def transportOptions(options: RequestOptions, headers: Headers) -> TransportOptions:
	return TransportOptions(
		headers=headers,
		allowRedirectHeaders=options.allowRedirectHeaders,
		followRedirects=options.followRedirects is not False,
		maxRedirects=options.maxRedirects,
		gzip=options.gzip is not False,
		cache=options.cache,
		agent=options.agent,
		timeout=options.timeout,
		socketTimeout=options.socketTimeout,
		retry=options.retry,
		retryDelay=options.retryDelay,
		maxRetries=options.maxRetries,
		isMatch=options.isMatch,
		isExpired=options.isExpired,
		canCache=options.canCache,
	)


async def send(
	transport: Transport,
	method: str,
	url: str,
	options: TransportOptions,
	body: NormalizedBody | None = None,
) -> Response:
	"""Invokes the transport, writes the body to the sink it returns and
	buffers the response."""
	received: asyncio.Future[TransportResponse] = (
		asyncio.get_running_loop().create_future()
	)

	def onResponse(
		error: BaseException | None, response: TransportResponse | None
	) -> None:
		if received.done():
			return
		elif error is not None:
			received.set_exception(error)
		elif response is None:
			received.set_exception(NoResponseError())
		else:
			received.set_result(response)

	debug("Dispatching request", Method=method, URL=url)
	sink = transport.request(method, url, options, onResponse)
	if sink is not None and body is not None:
		body.writeTo(sink)
	try:
		res: TransportResponse = await received
	except BaseException as e:
		# Stops whatever is still writing the body
		if sink is not None:
			sink.abort(e)
		raise
	try:
		payload = await res.body.load()
	except Exception as e:
		warning("Response stream failed", URL=res.url, Error=str(e))
		raise ResponseStreamError(f"Response stream failed: {e}") from e
	return Response(
		statusCode=res.statusCode,
		headers=res.headers,
		body=payload if isinstance(payload, bytes) else b"",
		url=res.url,
	)


async def dispatch(
	method: str,
	url: str,
	options: RequestOptions | Mapping[str, Any] | None = None,
	*,
	transport: Transport | None = None,
) -> Response:
	if not isinstance(method, str):
		raise TypeError("The method must be a string.")
	if not isinstance(url, str):
		raise TypeError("The URL/path must be a string.")
	opts = RequestOptions.Make(options)
	method = method.upper()
	headers = Headers.Make(opts.headers)
	if opts.qs:
		url = mergeQuery(url, opts.qs)
	body: NormalizedBody | None = None
	if method in BODYLESS_METHODS:
		if opts.hasBody:
			raise BodyNotAllowedError(method)
	else:
		body = selectBody(opts)
		try:
			bodyHeaders = await body.getHeaders()
		except Exception as e:
			warning("Could not resolve the body headers", URL=url, Error=str(e))
			raise
		mergeHeaders(headers, bodyHeaders)
	return await send(
		transport or BasicTransport(),
		method,
		url,
		transportOptions(opts, headers),
		body,
	)


def request(
	method: str,
	url: str,
	options: RequestOptions | Mapping[str, Any] | None = None,
	*,
	transport: Transport | None = None,
) -> ResponseFuture:
	"""Performs the request and returns an awaitable resolving to the fully
	buffered `Response`. Errors, including invalid arguments, are raised
	when awaiting, never by this call."""
	return ResponseFuture(dispatch(method, url, options, transport=transport))


class Client:
	"""Sends requests through the same transport, which is how transport
	state (connection pool, memory cache) is shared between requests."""

	__slots__ = ["transport"]

	def __init__(self, transport: Transport | None = None):
		self.transport: Transport = transport or BasicTransport()

	def request(
		self,
		method: str,
		url: str,
		options: RequestOptions | Mapping[str, Any] | None = None,
	) -> ResponseFuture:
		return request(method, url, options, transport=self.transport)


# EOF
