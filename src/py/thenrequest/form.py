import asyncio
import os
from pathlib import Path
from typing import IO, Any, Callable, NamedTuple

from urllib3.fields import RequestField, guess_content_type
from urllib3.filepost import choose_boundary

from .headers import THeaders
from .utils.io import EOL, Writable, asBytes, iterStream

# --
# A `multipart/form-data` body made of fields and files, which is streamed
# part by part so that files are never loaded in memory.


class FormPart(NamedTuple):
	head: bytes
	data: bytes | Path | IO[bytes]

	@property
	def length(self) -> int:
		"""The encoded length of the part, raises an `OSError` or a
		`ValueError` when the size of its data can't be known."""
		return len(self.head) + dataLength(self.data) + len(EOL)


def dataLength(data: bytes | Path | IO[bytes]) -> int:
	if isinstance(data, bytes):
		return len(data)
	elif isinstance(data, Path):
		return data.stat().st_size
	try:
		return os.fstat(data.fileno()).st_size - data.tell()
	except (AttributeError, OSError):
		pass
	if callable(getattr(data, "seekable", None)) and data.seekable():
		position = data.tell()
		end = data.seek(0, os.SEEK_END)
		data.seek(position)
		return end - position
	raise ValueError(f"Unknown length for form stream: {data!r}")


class FormData:
	"""A multipart form, compatible with the `form` request option."""

	__slots__ = ["boundary", "parts", "task"]

	def __init__(self, boundary: str | None = None):
		self.boundary: str = boundary or choose_boundary()
		self.parts: list[FormPart] = []
		self.task: asyncio.Task[None] | None = None

	def append(
		self,
		name: str,
		value: str | bytes | int | float | Path | IO[bytes],
		*,
		filename: str | None = None,
		contentType: str | None = None,
	) -> "FormData":
		"""Appends a field. Paths and binary file objects are sent as files,
		with the filename inferred when not given."""
		data: bytes | Path | IO[bytes]
		if isinstance(value, (str, bytes)):
			data = asBytes(value)
		elif isinstance(value, bool):
			data = b"true" if value else b"false"
		elif isinstance(value, (int, float)):
			data = str(value).encode("ascii")
		elif isinstance(value, Path):
			data = value
			filename = filename or value.name
		elif callable(getattr(value, "read", None)):
			data = value
			path = getattr(value, "name", None)
			filename = filename or (os.path.basename(path) if isinstance(path, str) else None)
		else:
			raise TypeError(f"Unsupported form value for {name!r}: {type(value)}")
		field = RequestField(name=name, data=b"", filename=filename)
		field.make_multipart(
			content_type=contentType
			or (guess_content_type(filename) if filename else None)
		)
		head = f"--{self.boundary}\r\n{field.render_headers()}".encode("utf8")
		self.parts.append(FormPart(head, data))
		return self

	@property
	def footer(self) -> bytes:
		return f"--{self.boundary}--\r\n".encode("ascii")

	def getBoundary(self) -> str:
		return self.boundary

	def getHeaders(self) -> THeaders:
		return {"content-type": f"multipart/form-data; boundary={self.boundary}"}

	def getLengthSync(self) -> int:
		return sum(_.length for _ in self.parts) + len(self.footer)

	def getLength(
		self, callback: Callable[[BaseException | str | None, int | None], Any]
	) -> None:
		"""Calls back with the total encoded length, or with the error that
		prevented computing it."""
		try:
			length = self.getLengthSync()
		except (OSError, ValueError) as e:
			callback(e, None)
		else:
			callback(None, length)

	def pipe(self, sink: Writable) -> None:
		"""Streams the encoded form into the sink and ends it, aborting the
		sink if a part can't be read."""
		self.task = asyncio.ensure_future(self._write(sink))

	async def _write(self, sink: Writable) -> None:
		try:
			for part in self.parts:
				sink.write(part.head)
				if isinstance(part.data, bytes):
					sink.write(part.data)
				elif isinstance(part.data, Path):
					with open(part.data, "rb") as f:
						await self._copy(f, sink)
				else:
					await self._copy(part.data, sink)
				sink.write(EOL)
				await sink.drain()
		except Exception as e:
			sink.abort(e)
		else:
			sink.end(self.footer)

	async def _copy(self, source: IO[bytes], sink: Writable) -> None:
		async for chunk in iterStream(source):
			sink.write(chunk)
			await sink.drain()


# EOF
