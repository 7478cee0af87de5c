from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ScratchSpace:
	"""Process-wide scratch directory holding short-lived per-request files."""

	def __init__(self, root: PathLike) -> None:
		self.root = Path(root)

	def ensure_directory(self) -> bool:
		try:
			self.root.mkdir(parents=True, exist_ok=True)
		except OSError:
			logger.exception("Could not create scratch directory %s", self.root)
			return False
		return True

	def allocate_unique_path(self, extension: str = "") -> Path:
		if extension and not extension.startswith("."):
			extension = "." + extension
		return self.root / f"{uuid.uuid4().hex}{extension}"

	def release(self, path: PathLike) -> None:
		try:
			Path(path).unlink()
		except FileNotFoundError:
			logger.debug("Scratch file already gone: %s", path)
		except OSError:
			logger.warning("Could not delete scratch file %s", path, exc_info=True)

	def request_files(self) -> "RequestFiles":
		return RequestFiles(self)


class RequestFiles:
	"""
	Per-request cleanup list.

	Every temporary path a request creates is tracked here; each one is deleted
	at most once, however many times release_all() is reached.
	"""

	def __init__(self, scratch: ScratchSpace) -> None:
		self.scratch = scratch
		self._paths: List[Path] = []

	def track(self, path: PathLike) -> Path:
		p = Path(path)
		if p not in self._paths:
			self._paths.append(p)
		return p

	def release(self, path: PathLike) -> None:
		p = Path(path)
		if p in self._paths:
			self._paths.remove(p)
			self.scratch.release(p)

	def hand_off(self, path: PathLike) -> Path:
		p = Path(path)
		if p in self._paths:
			self._paths.remove(p)
		return p

	def release_all(self) -> None:
		while self._paths:
			self.scratch.release(self._paths.pop())

	@property
	def paths(self) -> List[Path]:
		return list(self._paths)

	def __enter__(self) -> "RequestFiles":
		return self

	def __exit__(self, *exc_info) -> None:
		self.release_all()
