from __future__ import annotations

import asyncio
import io
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image, ImageCms

from api.services.errors import ConversionError
from api.services.scratch import RequestFiles, ScratchSpace
from api.services.uploads import UploadedFile

logger = logging.getLogger(__name__)

WEBP_MIME_TYPE = "image/webp"

# Effort setting only: with lossless=True pixels are reproduced exactly either way
WEBP_SAVE_OPTIONS = {"lossless": True, "exact": True, "quality": 80, "method": 4}


@dataclass(frozen=True)
class ConversionResult:
	output_path: Path
	mime_type: str = WEBP_MIME_TYPE


@lru_cache(maxsize=1)
def srgb_profile_bytes() -> bytes:
	return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


def _has_alpha(img: Image.Image) -> bool:
	return img.mode in ("RGBA", "LA", "PA", "RGBa", "La") or "transparency" in img.info


def _to_8bit_grey(img: Image.Image) -> Image.Image:
	# 16-bit greyscale PNGs open as I;16 (or I); convert("L") would clamp, not scale
	arr = np.clip(np.asarray(img if img.mode == "I" else img.convert("I")), 0, 65535)
	return Image.fromarray((arr >> 8).astype(np.uint8))


def _cmyk_to_rgb(img: Image.Image, icc: Optional[bytes]) -> Tuple[Image.Image, Optional[bytes]]:
	if icc:
		try:
			rgb = ImageCms.profileToProfile(
				img,
				ImageCms.ImageCmsProfile(io.BytesIO(icc)),
				ImageCms.createProfile("sRGB"),
				outputMode="RGB",
			)
			return rgb, srgb_profile_bytes()
		except (ImageCms.PyCMSError, OSError) as e:
			logger.warning("CMYK profile could not be applied, converting unmanaged: %s", e)
	return img.convert("RGB"), None


def _webp_ready(img: Image.Image) -> Image.Image:
	if img.mode in ("RGB", "RGBA"):
		return img
	if img.mode == "I" or img.mode.startswith("I;16"):
		return _to_8bit_grey(img).convert("RGB")
	return img.convert("RGBA" if _has_alpha(img) else "RGB")


def convert_to_webp(source: Union[UploadedFile, str, Path], output_path: Union[str, Path]) -> ConversionResult:
	"""
	Decode `source` (first frame only for animations) and write it to
	`output_path` as lossless WebP with the original ICC profile embedded.

	CMYK sources are colour-managed into sRGB and carry the sRGB profile instead.
	"""
	src = source.path if isinstance(source, UploadedFile) else Path(source)
	out = Path(output_path)
	try:
		with Image.open(src) as img:
			img.load()
			icc: Optional[bytes] = img.info.get("icc_profile")
			if img.mode == "CMYK":
				frame, icc = _cmyk_to_rgb(img, icc)
			else:
				frame = _webp_ready(img)
			frame.save(out, format="WEBP", icc_profile=icc, **WEBP_SAVE_OPTIONS)
	except Exception as e:
		logger.exception("Conversion of %s to WebP failed", src.name)
		raise ConversionError() from e
	logger.info("Converted %s -> %s (icc=%s)", src.name, out.name, "yes" if icc else "no")
	return ConversionResult(output_path=out)


class ConversionEngine:
	def __init__(self, scratch: ScratchSpace, workers: int = 4, timeout: Optional[float] = 120.0) -> None:
		self.scratch = scratch
		self.timeout = timeout
		self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="webp-convert")

	async def convert(self, upload: UploadedFile, files: RequestFiles) -> ConversionResult:
		output = files.track(self.scratch.allocate_unique_path(".webp"))
		future = self._executor.submit(convert_to_webp, upload, output)
		try:
			return await asyncio.wait_for(asyncio.wrap_future(future), timeout=self.timeout)
		except asyncio.TimeoutError as e:
			logger.error("Conversion of %s timed out after %ss", upload.original_name, self.timeout)
			self._abandon(future, output, files)
			raise ConversionError() from e
		except asyncio.CancelledError:
			self._abandon(future, output, files)
			raise

	def _abandon(self, future: Future, output: Path, files: RequestFiles) -> None:
		# The worker may still write `output`; delete it only once the worker is done
		files.hand_off(output)
		future.add_done_callback(lambda _f: self.scratch.release(output))

	def shutdown(self) -> None:
		self._executor.shutdown(wait=False, cancel_futures=True)
