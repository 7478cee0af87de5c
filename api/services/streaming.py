from __future__ import annotations

import logging
import os
from typing import BinaryIO, Iterator, Optional

from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect
from starlette.responses import Response, StreamingResponse
from starlette.types import Message, Receive, Scope, Send

from api.services.conversion import ConversionResult
from api.services.errors import StreamError
from api.services.scratch import RequestFiles
from api.services.uploads import UploadedFile

logger = logging.getLogger(__name__)


def _read_chunks(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
	while True:
		chunk = handle.read(chunk_size)
		if not chunk:
			break
		yield chunk


def error_response(error: StreamError) -> JSONResponse:
	return JSONResponse({"error": error.message}, status_code=error.status_code)


class CleanupStreamingResponse(StreamingResponse):
	"""
	StreamingResponse that owns an open file and the request's cleanup list.

	Errors before the response start message fall back to a 500 JSON body;
	after it, the error propagates and the server drops the connection. A client
	that goes away mid-download is only logged.
	"""

	def __init__(self, handle: BinaryIO, files: RequestFiles, chunk_size: int, **kwargs) -> None:
		# A sync iterator is consumed through Starlette's threadpool
		super().__init__(_read_chunks(handle, chunk_size), **kwargs)
		self.handle = handle
		self.files = files
		self.headers_sent = False

	async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
		async def tracking_send(message: Message) -> None:
			await send(message)
			if message["type"] == "http.response.start":
				self.headers_sent = True

		try:
			await super().__call__(scope, receive, tracking_send)
		except ClientDisconnect:
			logger.info("Client disconnected while receiving converted image")
		except Exception:
			logger.exception("Stream error while sending converted image")
			if self.headers_sent:
				raise
			await error_response(StreamError())(scope, receive, send)
		finally:
			self.release()

	def release(self) -> None:
		self.handle.close()
		self.files.release_all()


def stream_conversion(
	result: ConversionResult,
	upload: UploadedFile,
	files: RequestFiles,
	chunk_size: int = 64 * 1024,
) -> Response:
	"""
	Build the response for a finished conversion.

	From here on the response owns `files`: both the upload and the output are
	released when streaming ends, fails, or the client goes away.
	"""
	handle: Optional[BinaryIO] = None
	try:
		handle = result.output_path.open("rb")
		size = os.fstat(handle.fileno()).st_size
	except OSError:
		logger.exception("Could not open converted file %s", result.output_path.name)
		if handle is not None:
			handle.close()
		files.release_all()
		return error_response(StreamError())

	headers = {
		"Content-Length": str(size),
		"Content-Disposition": f'inline; filename="{_ascii_filename(upload.stem)}.webp"',
	}
	return CleanupStreamingResponse(handle, files, chunk_size, media_type=result.mime_type, headers=headers)


def _ascii_filename(stem: str) -> str:
	cleaned = "".join(ch if (ch.isascii() and (ch.isalnum() or ch in "-_. ")) else "_" for ch in stem)
	return cleaned.strip() or "image"
