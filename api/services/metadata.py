from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PIL import Image, ImageCms

from api.services.errors import MetadataReadError
from api.services.uploads import UploadedFile

logger = logging.getLogger(__name__)

DESCRIPTION_NOT_AVAILABLE = "Description not available"


@dataclass(frozen=True)
class ColorProfile:
	raw_bytes: bytes = b""
	base64_encoding: str = ""
	description: str = ""

	@property
	def present(self) -> bool:
		return bool(self.raw_bytes)

	def to_payload(self) -> Dict[str, Any]:
		if not self.present:
			return {}
		return {
			"iccProfileBase64": self.base64_encoding,
			"iccProfileDescription": self.description,
		}


def _bytes_to_str(v: Any) -> Optional[str]:
	if v is None:
		return None
	if isinstance(v, bytes):
		return v.decode("utf-8", errors="ignore")
	return str(v)


def describe_profile(raw: bytes) -> str:
	"""Human-readable name from the profile's description tag, or the sentinel."""
	try:
		profile = ImageCms.ImageCmsProfile(io.BytesIO(raw))
		description = _bytes_to_str(profile.profile.profile_description)
	except Exception as e:
		logger.info("ICC profile could not be parsed: %s", e)
		return DESCRIPTION_NOT_AVAILABLE
	description = (description or "").strip().strip("\x00")
	return description or DESCRIPTION_NOT_AVAILABLE


def profile_from_bytes(raw: Optional[bytes]) -> ColorProfile:
	if not raw:
		return ColorProfile()
	return ColorProfile(
		raw_bytes=raw,
		base64_encoding=base64.b64encode(raw).decode("ascii"),
		description=describe_profile(raw),
	)


def read_icc_bytes(path: Union[str, Path]) -> Optional[bytes]:
	# Image.open only parses headers and metadata segments; pixels stay undecoded
	with Image.open(path) as img:
		return img.info.get("icc_profile")


def read_color_profile(upload: Union[UploadedFile, str, Path]) -> ColorProfile:
	"""
	Extract the embedded ICC profile of an uploaded image.

	The upload itself is never deleted here; the request that owns it does that.
	"""
	path = upload.path if isinstance(upload, UploadedFile) else Path(upload)
	try:
		raw = read_icc_bytes(path)
	except Exception as e:
		logger.exception("Failed to read image metadata from %s", path.name)
		raise MetadataReadError() from e
	return profile_from_bytes(raw)
