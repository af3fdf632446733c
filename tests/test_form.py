import asyncio
import io

import pytest

from thenrequest.body import FormBody
from thenrequest.form import FormData
from thenrequest.transport import BodySink


def encode(form: FormData) -> bytes:
	async def main() -> bytes:
		sink = BodySink()
		form.pipe(sink)
		return await sink.load()

	return asyncio.run(main())


def length(form: FormData) -> tuple:
	res: list = []
	form.getLength(lambda error, value: res.append((error, value)))
	assert len(res) == 1
	return res[0]


def test_fields():
	form = FormData(boundary="BOUNDARY")
	form.append("name", "value").append("count", 3).append("flag", True)
	data = encode(form)
	assert data == (
		b"--BOUNDARY\r\n"
		b'Content-Disposition: form-data; name="name"\r\n\r\n'
		b"value\r\n"
		b"--BOUNDARY\r\n"
		b'Content-Disposition: form-data; name="count"\r\n\r\n'
		b"3\r\n"
		b"--BOUNDARY\r\n"
		b'Content-Disposition: form-data; name="flag"\r\n\r\n'
		b"true\r\n"
		b"--BOUNDARY--\r\n"
	)
	assert length(form) == (None, len(data))


def test_headers():
	form = FormData()
	assert form.getHeaders() == {
		"content-type": f"multipart/form-data; boundary={form.getBoundary()}"
	}


def test_files(tmp_path):
	path = tmp_path / "notes.txt"
	path.write_bytes(b"some notes")
	form = FormData(boundary="B")
	form.append("notes", path)
	form.append("blob", io.BytesIO(b"\x00\x01"), filename="blob.bin")
	# Streams are measured from their current position
	expected = length(form)
	data = encode(form)
	assert expected == (None, len(data))
	assert b'name="notes"; filename="notes.txt"' in data
	assert b"Content-Type: text/plain" in data
	assert b"some notes\r\n" in data
	assert b'filename="blob.bin"' in data
	assert b"Content-Type: application/octet-stream" in data
	assert b"\x00\x01\r\n--B--\r\n" in data


def test_opened_file(tmp_path):
	path = tmp_path / "data.json"
	path.write_bytes(b'{"a":1}')
	with open(path, "rb") as f:
		form = FormData().append("data", f)
		expected = form.getLengthSync()
		assert length(form) == (None, expected)
		data = encode(form)
	assert b'filename="data.json"' in data
	assert b"Content-Type: application/json" in data
	assert len(data) == expected


def test_missing_file(tmp_path):
	form = FormData().append("file", tmp_path / "missing.txt")
	error, value = length(form)
	assert isinstance(error, FileNotFoundError)
	assert value is None
	with pytest.raises(FileNotFoundError):
		asyncio.run(FormBody(form).getHeaders())


def test_unsized_stream():
	class Stream:
		def read(self, size: int = -1) -> bytes:
			return b""

	form = FormData().append("stream", Stream())
	error, value = length(form)
	assert isinstance(error, ValueError)


def test_unsupported_value():
	with pytest.raises(TypeError):
		FormData().append("bad", object())


def test_form_body_headers():
	form = FormData(boundary="B").append("a", "b")
	headers = asyncio.run(FormBody(form).getHeaders())
	assert headers == {
		"content-type": "multipart/form-data; boundary=B",
		"content-length": str(len(encode(form))),
	}


# EOF
