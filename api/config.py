from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


MiB = 1024 * 1024

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif")


def _env_list(name: str, default: str) -> List[str]:
	raw = os.getenv(name, default)
	return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
	"""Runtime settings, read from WEBP_* environment variables by from_env()."""

	scratch_dir: Path = Path("./temp")
	max_upload_bytes: int = 100 * MiB
	conversion_timeout: float = 120.0
	conversion_workers: int = 4
	stream_chunk_size: int = 64 * 1024
	log_level: str = "INFO"
	cors_origins: List[str] = field(default_factory=lambda: ["*"])
	allowed_image_types: tuple = ALLOWED_IMAGE_TYPES

	@classmethod
	def from_env(cls) -> "Settings":
		return cls(
			scratch_dir=Path(os.getenv("WEBP_SCRATCH_DIR", "./temp")),
			max_upload_bytes=int(os.getenv("WEBP_MAX_UPLOAD_BYTES", str(100 * MiB))),
			conversion_timeout=float(os.getenv("WEBP_CONVERSION_TIMEOUT", "120")),
			conversion_workers=max(1, int(os.getenv("WEBP_CONVERSION_WORKERS", "4"))),
			stream_chunk_size=int(os.getenv("WEBP_STREAM_CHUNK_SIZE", str(64 * 1024))),
			log_level=os.getenv("WEBP_LOG_LEVEL", "INFO"),
			cors_origins=_env_list("WEBP_CORS_ORIGINS", "*"),
		)
