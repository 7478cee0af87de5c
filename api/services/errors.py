from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
	status_code = 500
	message = "Internal server error"

	def __init__(self, message: Optional[str] = None) -> None:
		if message is not None:
			self.message = message
		super().__init__(self.message)


class MethodNotAllowed(PipelineError):
	status_code = 405
	message = "Method not allowed"


class MalformedRequest(PipelineError):
	status_code = 500
	message = "Error parsing the files"


class PayloadTooLarge(PipelineError):
	status_code = 413
	message = "Uploaded file exceeds the maximum allowed size"


class InvalidUpload(PipelineError):
	status_code = 400
	message = "Uploaded file is empty or file type is not allowed"


class MissingUpload(InvalidUpload):
	message = "No file uploaded"


class MetadataReadError(PipelineError):
	status_code = 500
	message = "Failed to read ICC Profile"


class ConversionError(PipelineError):
	status_code = 500
	message = "Could not convert image to WebP"


class StreamError(PipelineError):
	status_code = 500
	message = "Stream error occurred"
