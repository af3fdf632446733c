from .model import (
	RequestOptions,
	Response,
	RequestError,
	BodyNotAllowedError,
	FormLengthError,
	NoResponseError,
	ResponseStreamError,
	HTTPStatusError,
	ClientException,
)  # NOQA: F401
from .headers import Headers  # NOQA: F401
from .form import FormData  # NOQA: F401
from .transport import (
	Transport,
	TransportOptions,
	TransportResponse,
	ResponseBody,
	BodySink,
)  # NOQA: F401
from .client import BasicTransport, ConnectionPool  # NOQA: F401
from .request import request, Client, ResponseFuture  # NOQA: F401

__version__ = "1.0.0"

# EOF
