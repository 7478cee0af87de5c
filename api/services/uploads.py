from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect, Request

from api.config import ALLOWED_IMAGE_TYPES
from api.services.errors import InvalidUpload, MalformedRequest, MissingUpload, PayloadTooLarge
from api.services.scratch import RequestFiles

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedFile:
	path: Path
	declared_mime_type: str
	size_bytes: int
	original_name: str

	@property
	def stem(self) -> str:
		return Path(self.original_name).stem or "image"


def _decode(value: bytes) -> str:
	try:
		return value.decode("utf-8")
	except UnicodeDecodeError:
		return value.decode("latin-1")


def _safe_extension(filename: str) -> str:
	suffix = Path(filename).suffix.lower()
	if 1 < len(suffix) <= 8 and suffix[1:].isalnum():
		return suffix
	return ""


class _FormCollector:
	"""Receives python-multipart callbacks and keeps the single image part."""

	def __init__(self, field_name: str, allowed_types: Iterable[str], max_bytes: int, files: RequestFiles) -> None:
		self.field_name = field_name
		self.allowed_types = tuple(allowed_types)
		self.max_bytes = max_bytes
		self.files = files

		self.upload_path: Optional[Path] = None
		self.declared_type = ""
		self.original_name = ""
		self.size = 0
		self.rejected_type: Optional[str] = None
		self.complete = False

		self._headers: Dict[bytes, bytes] = {}
		self._field = b""
		self._value = b""
		self._sink: Optional[BinaryIO] = None

	def callbacks(self) -> Dict[str, object]:
		return {
			"on_part_begin": self.on_part_begin,
			"on_header_field": self.on_header_field,
			"on_header_value": self.on_header_value,
			"on_header_end": self.on_header_end,
			"on_headers_finished": self.on_headers_finished,
			"on_part_data": self.on_part_data,
			"on_part_end": self.on_part_end,
			"on_end": self.on_end,
		}

	def on_part_begin(self) -> None:
		self._headers = {}
		self._sink = None

	def on_header_field(self, data: bytes, start: int, end: int) -> None:
		self._field += data[start:end]

	def on_header_value(self, data: bytes, start: int, end: int) -> None:
		self._value += data[start:end]

	def on_header_end(self) -> None:
		self._headers[self._field.lower()] = self._value
		self._field = b""
		self._value = b""

	def on_headers_finished(self) -> None:
		_, disposition = parse_options_header(self._headers.get(b"content-disposition", b""))
		name = _decode(disposition.get(b"name", b""))
		if name != self.field_name or b"filename" not in disposition:
			return
		filename = _decode(disposition[b"filename"])
		if not filename:
			# Browsers send an empty, nameless part when no file was picked
			return
		if self.upload_path is not None or self.rejected_type is not None:
			logger.info("Ignoring extra '%s' part: %s", self.field_name, filename)
			return
		mime, _ = parse_options_header(self._headers.get(b"content-type", b"application/octet-stream"))
		declared = _decode(mime).lower()
		if declared not in self.allowed_types:
			logger.info("Dropping upload %s with disallowed type %s", filename, declared)
			self.rejected_type = declared
			return
		path = self.files.scratch.allocate_unique_path(_safe_extension(filename))
		self.files.track(path)
		self._sink = path.open("wb")
		self.upload_path = path
		self.declared_type = declared
		self.original_name = filename

	def on_part_data(self, data: bytes, start: int, end: int) -> None:
		if self._sink is None:
			return
		self.size += end - start
		if self.size > self.max_bytes:
			raise PayloadTooLarge()
		self._sink.write(data[start:end])

	def on_part_end(self) -> None:
		self.close()

	def on_end(self) -> None:
		self.complete = True

	def close(self) -> None:
		if self._sink is not None:
			self._sink.close()
			self._sink = None

	def discard(self) -> None:
		self.close()
		if self.upload_path is not None:
			self.files.release(self.upload_path)
			self.upload_path = None


class UploadValidator:
	def __init__(
		self,
		field_name: str = "image",
		allowed_types: Iterable[str] = ALLOWED_IMAGE_TYPES,
		max_bytes: int = 100 * 1024 * 1024,
	) -> None:
		self.field_name = field_name
		self.allowed_types = tuple(allowed_types)
		self.max_bytes = max_bytes

	async def parse(self, request: Request, files: RequestFiles) -> UploadedFile:
		"""
		Parse the multipart body of `request` and return the validated upload.

		Raises MalformedRequest, PayloadTooLarge, MissingUpload or InvalidUpload.
		"""
		content_type, params = parse_options_header(request.headers.get("content-type", ""))
		if content_type.lower() != b"multipart/form-data" or not params.get(b"boundary"):
			raise MalformedRequest()

		collector = _FormCollector(self.field_name, self.allowed_types, self.max_bytes, files)
		parser = MultipartParser(params[b"boundary"], collector.callbacks())
		try:
			async for chunk in request.stream():
				if chunk:
					parser.write(chunk)
			parser.finalize()
			if not collector.complete:
				raise MultipartParseError("Body ended before the closing boundary")
		except PayloadTooLarge:
			logger.warning("Upload %s exceeded %d bytes", collector.original_name, self.max_bytes)
			collector.discard()
			raise
		except (MultipartParseError, ClientDisconnect, OSError, ValueError) as e:
			logger.error("Multipart parsing failed: %s", e)
			collector.discard()
			raise MalformedRequest() from e
		finally:
			collector.close()

		return self._validate(collector, files)

	def _validate(self, collector: _FormCollector, files: RequestFiles) -> UploadedFile:
		if collector.upload_path is None:
			if collector.rejected_type is not None:
				raise InvalidUpload()
			raise MissingUpload()
		upload = UploadedFile(
			path=collector.upload_path,
			declared_mime_type=collector.declared_type,
			size_bytes=collector.size,
			original_name=collector.original_name,
		)
		if upload.size_bytes == 0 or upload.declared_mime_type not in self.allowed_types:
			files.release(upload.path)
			raise InvalidUpload()
		logger.info(
			"Accepted upload %s (%s, %d bytes) as %s",
			upload.original_name,
			upload.declared_mime_type,
			upload.size_bytes,
			upload.path.name,
		)
		return upload
