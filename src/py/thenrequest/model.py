from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, NamedTuple

from .headers import THeaders, THeaderValue
from .utils.io import DEFAULT_ENCODING
from .utils.logging import warning

if TYPE_CHECKING:
	from .form import FormData

# -----------------------------------------------------------------------------
#
# ERRORS
#
# -----------------------------------------------------------------------------


class RequestError(Exception):
	"""Base class for the errors raised by this library, transport
	errors excluded."""

	def __init__(self, message: str):
		super().__init__(message)
		self.message: str = message


class BodyNotAllowedError(RequestError):
	"""A body was given for a method that cannot carry one."""

	def __init__(self, method: str):
		super().__init__(f"You cannot pass a body to a {method} request.")
		self.method: str = method


class FormLengthError(RequestError):
	"""The length of a multipart form could not be computed."""


class NoResponseError(RequestError):
	def __init__(self) -> None:
		super().__init__("No request was received")


class ResponseStreamError(RequestError):
	"""The response body stream failed while being buffered, the original
	error is the `__cause__`."""


class HTTPStatusError(RequestError):
	"""Raised when getting the body of a response with a status >= 300."""

	def __init__(
		self,
		statusCode: int,
		headers: THeaders,
		body: bytes,
		url: str,
	):
		super().__init__(
			f"Server responded to {url} with status code {statusCode}:\n{body.decode(DEFAULT_ENCODING, errors='replace')}"
		)
		self.statusCode: int = statusCode
		self.headers: THeaders = headers
		self.body: bytes = body
		self.url: str = url


class HTTPProcessingStatus(Enum):
	"""Why a transport exchange could not be completed."""

	Timeout = 10
	NoData = 11
	BadFormat = 12
	TooManyRedirects = 13


class ClientException(RequestError):
	def __init__(self, status: HTTPProcessingStatus, details: str | None = None):
		super().__init__(
			f"Client response processing failed: {status.name}{f' ({details})' if details else ''}"
		)
		self.status: HTTPProcessingStatus = status


# -----------------------------------------------------------------------------
#
# OPTIONS
#
# -----------------------------------------------------------------------------

# Methods that can't carry a body, any other one may
BODYLESS_METHODS: frozenset[str] = frozenset(("GET", "DELETE", "HEAD"))


class RequestOptions(NamedTuple):
	"""The options of a request. Only one of `body`, `json` and `form` is
	used, in the order `form`, `json`, `body`."""

	body: Any = None
	json: Any = None
	form: "FormData | None" = None
	headers: Mapping[str, THeaderValue] | None = None
	qs: Mapping[str, Any] | None = None
	# Transport options
	allowRedirectHeaders: list[str] | None = None
	followRedirects: bool | None = None
	maxRedirects: int | None = None
	gzip: bool | None = None
	cache: str | None = None
	agent: Any = None
	timeout: float | None = None
	socketTimeout: float | None = None
	retry: bool | Callable[..., bool] | None = None
	retryDelay: float | Callable[..., float] | None = None
	maxRetries: int | None = None
	isMatch: Callable[..., bool] | None = None
	isExpired: Callable[..., bool] | None = None
	canCache: Callable[..., bool] | None = None

	@staticmethod
	def Make(
		options: "RequestOptions | Mapping[str, Any] | None" = None,
	) -> "RequestOptions":
		if options is None:
			return RequestOptions()
		elif isinstance(options, RequestOptions):
			return options
		elif isinstance(options, Mapping):
			unknown = [_ for _ in options if _ not in RequestOptions._fields]
			if unknown:
				warning("Ignoring unknown request options", Options=unknown)
			return RequestOptions(
				**{k: v for k, v in options.items() if k in RequestOptions._fields}
			)
		else:
			raise TypeError("Options must be an object (or None).")

	@property
	def hasBody(self) -> bool:
		body = self.body
		return (
			self.form is not None
			or self.json is not None
			or not (
				body is None
				or (isinstance(body, (str, bytes, bytearray, memoryview)) and not body)
				or (isinstance(body, (bool, int, float)) and not body)
			)
		)


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class Response(NamedTuple):
	"""A fully buffered response."""

	statusCode: int
	headers: THeaders
	body: bytes
	url: str

	def header(self, name: str) -> THeaderValue | None:
		key = name.lower()
		for k, v in self.headers.items():
			if k.lower() == key:
				return v
		return None

	def isError(self) -> bool:
		return self.statusCode == 0 or self.statusCode >= 400

	def getBody(self, encoding: str | None = None) -> bytes | str:
		"""Returns the body, decoded when an encoding is given. Raises
		an `HTTPStatusError` for any status >= 300."""
		if self.statusCode >= 300:
			raise HTTPStatusError(self.statusCode, self.headers, self.body, self.url)
		return self.body if encoding is None else self.body.decode(encoding)

	def __str__(self) -> str:
		return f"Response({self.statusCode} {self.url} {len(self.body)} bytes)"


# EOF
