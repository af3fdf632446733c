import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from mypy_extensions import mypyc_attr

from .headers import THeaders
from .model import FormLengthError, RequestOptions
from .utils.io import Writable, asBytes, isStreamLike, pipe
from .utils.json import json
from .utils.logging import warning

if TYPE_CHECKING:
	from .form import FormData

# --
# Request bodies are normalized into one of three kinds: bytes, multipart
# forms and streams. Each gives the headers it implies and knows how to
# write itself to the transport's request sink.


@mypyc_attr(allow_interpreted_subclasses=True)
class NormalizedBody(ABC):
	"""A request body, as given to the transport."""

	@abstractmethod
	async def getHeaders(self) -> THeaders:
		"""Returns the headers implied by the body."""

	@abstractmethod
	def writeTo(self, sink: Writable) -> None:
		"""Writes the body to the sink, which must only be done once
		the headers have been resolved."""


class BufferBody(NormalizedBody):
	__slots__ = ["payload", "extraHeaders"]

	def __init__(self, payload: bytes, extraHeaders: THeaders | None = None):
		self.payload: bytes = payload
		self.extraHeaders: THeaders = extraHeaders or {}

	async def getHeaders(self) -> THeaders:
		return {"content-length": str(len(self.payload)), **self.extraHeaders}

	def writeTo(self, sink: Writable) -> None:
		sink.end(self.payload)


class FormBody(NormalizedBody):
	__slots__ = ["form"]

	def __init__(self, form: "FormData"):
		self.form: FormData = form

	async def getHeaders(self) -> THeaders:
		headers: THeaders = dict(self.form.getHeaders())
		result: asyncio.Future[THeaders] = asyncio.get_running_loop().create_future()

		# The form may call back more than once, only the first call counts
		def onLength(error: Any, length: int | None) -> None:
			if result.done():
				return
			if error:
				warning("Could not compute the form length", Error=str(error))
				# Anything that is not an exception is wrapped in one
				result.set_exception(
					error
					if isinstance(error, BaseException)
					else FormLengthError(str(error))
				)
			else:
				headers["content-length"] = str(length)
				result.set_result(headers)

		self.form.getLength(onLength)
		return await result

	def writeTo(self, sink: Writable) -> None:
		# The form ends the sink itself
		self.form.pipe(sink)


class StreamBody(NormalizedBody):
	"""A body of unknown length. No `content-length` is ever set, which
	means the transport will use a chunked transfer unless the caller
	gives one."""

	__slots__ = ["stream", "task"]

	def __init__(self, stream: Any):
		self.stream: Any = stream
		self.task: asyncio.Task[None] | None = None

	async def getHeaders(self) -> THeaders:
		return {}

	def writeTo(self, sink: Writable) -> None:
		self.task = pipe(self.stream, sink)


def selectBody(options: RequestOptions) -> NormalizedBody:
	"""Creates the normalized body for the given options, which is always
	a body (possibly empty) unless the given body is of an unsupported
	type."""
	if options.form is not None:
		return FormBody(options.form)
	extraHeaders: THeaders = {}
	body = options.body
	if options.json is not None:
		extraHeaders["content-type"] = "application/json"
		body = json(options.json)
	if isinstance(body, (str, bytearray, memoryview)):
		body = asBytes(body)
	if body is None or (isinstance(body, (bool, int, float)) and not body):
		body = b""
	if isinstance(body, bytes):
		return BufferBody(body, extraHeaders)
	elif isStreamLike(body):
		return StreamBody(body)
	else:
		raise TypeError("body should be a Buffer or a String")


# EOF
