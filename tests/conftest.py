"""Shared fixtures: an app bound to a temporary scratch directory and test images."""
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageCms

from api.config import Settings
from api.main import create_app


@pytest.fixture
def scratch_dir(tmp_path):
	return tmp_path / "scratch"


@pytest.fixture
def settings(scratch_dir):
	return Settings(scratch_dir=scratch_dir, conversion_workers=2, conversion_timeout=30)


@pytest.fixture
def api_client(settings):
	with TestClient(create_app(settings)) as client:
		yield client


@pytest.fixture
def srgb_icc():
	return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


def gradient_image(mode="RGB", size=(48, 32)):
	img = Image.new("RGB", size)
	img.putdata([((x * 5) % 256, (y * 7) % 256, (x * y) % 256) for y in range(size[1]) for x in range(size[0])])
	if mode == "RGBA":
		img.putalpha(Image.linear_gradient("L").resize(size))
	elif mode != "RGB":
		img = img.convert(mode)
	return img


def encode(img, fmt, **params):
	buf = io.BytesIO()
	img.save(buf, format=fmt, **params)
	return buf.getvalue()


@pytest.fixture
def jpeg_with_icc(srgb_icc):
	return encode(gradient_image(), "JPEG", quality=90, icc_profile=srgb_icc)


@pytest.fixture
def png_without_icc():
	return encode(gradient_image("RGBA"), "PNG")


@pytest.fixture
def gif_bytes():
	return encode(gradient_image().convert("P"), "GIF")
