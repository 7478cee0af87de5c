"""End-to-end tests for /api/read-icc and /api/convert-to-webp."""
import base64
import io

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from api.config import Settings
from api.main import create_app

ENDPOINTS = ["/api/read-icc", "/api/convert-to-webp"]
NOT_ALLOWED = "Uploaded file is empty or file type is not allowed"


def scratch_files(scratch_dir):
	return sorted(p.name for p in scratch_dir.iterdir())


class TestReadIcc:
	def test_jpeg_with_srgb_profile(self, api_client, scratch_dir, jpeg_with_icc, srgb_icc):
		res = api_client.post("/api/read-icc", files={"image": ("photo.jpg", jpeg_with_icc, "image/jpeg")})

		assert res.status_code == 200
		body = res.json()
		assert base64.b64decode(body["iccProfileBase64"]) == srgb_icc
		assert "sRGB" in body["iccProfileDescription"]
		assert scratch_files(scratch_dir) == []

	def test_png_without_profile_returns_no_fields(self, api_client, scratch_dir, png_without_icc):
		res = api_client.post("/api/read-icc", files={"image": ("graphic.png", png_without_icc, "image/png")})

		assert res.status_code == 200
		assert res.json() == {}
		assert scratch_files(scratch_dir) == []

	def test_corrupt_image(self, api_client, scratch_dir):
		res = api_client.post("/api/read-icc", files={"image": ("broken.png", b"not a png at all", "image/png")})

		assert res.status_code == 500
		assert res.json() == {"error": "Failed to read ICC Profile"}
		assert scratch_files(scratch_dir) == []

	def test_parse_error_message(self, api_client):
		res = api_client.post("/api/read-icc", content=b"plain", headers={"content-type": "text/plain"})

		assert res.status_code == 500
		assert res.json() == {"error": "Form parsing error"}


class TestConvertToWebp:
	def test_png_without_profile(self, api_client, scratch_dir, png_without_icc):
		res = api_client.post("/api/convert-to-webp", files={"image": ("graphic.png", png_without_icc, "image/png")})

		assert res.status_code == 200
		assert res.headers["content-type"] == "image/webp"
		assert res.headers["content-disposition"] == 'inline; filename="graphic.webp"'
		assert int(res.headers["content-length"]) == len(res.content)
		with Image.open(io.BytesIO(res.content)) as converted, Image.open(io.BytesIO(png_without_icc)) as original:
			assert converted.format == "WEBP"
			assert not converted.info.get("icc_profile")
			assert np.array_equal(np.asarray(converted.convert("RGBA")), np.asarray(original.convert("RGBA")))
		assert scratch_files(scratch_dir) == []

		reread = api_client.post("/api/read-icc", files={"image": ("graphic.png", png_without_icc, "image/png")})
		assert reread.json() == {}

	def test_profile_survives_conversion(self, api_client, scratch_dir, jpeg_with_icc, srgb_icc):
		res = api_client.post("/api/convert-to-webp", files={"image": ("photo.jpg", jpeg_with_icc, "image/jpeg")})

		assert res.status_code == 200
		with Image.open(io.BytesIO(res.content)) as converted:
			assert converted.info["icc_profile"] == srgb_icc
		assert scratch_files(scratch_dir) == []

	def test_same_source_gives_identical_bytes(self, api_client, jpeg_with_icc):
		upload = {"image": ("photo.jpg", jpeg_with_icc, "image/jpeg")}
		first = api_client.post("/api/convert-to-webp", files=upload)
		second = api_client.post("/api/convert-to-webp", files=upload)

		assert first.status_code == second.status_code == 200
		assert first.content == second.content

	def test_gif(self, api_client, scratch_dir, gif_bytes):
		res = api_client.post("/api/convert-to-webp", files={"image": ("anim.gif", gif_bytes, "image/gif")})

		assert res.status_code == 200
		with Image.open(io.BytesIO(res.content)) as converted:
			assert converted.size == (48, 32)
		assert scratch_files(scratch_dir) == []

	def test_corrupt_image(self, api_client, scratch_dir):
		res = api_client.post("/api/convert-to-webp", files={"image": ("broken.jpg", b"\xff\xd8\xffjunk", "image/jpeg")})

		assert res.status_code == 500
		assert res.json() == {"error": "Could not convert image to WebP"}
		assert scratch_files(scratch_dir) == []

	def test_parse_error_message(self, api_client, scratch_dir):
		res = api_client.post(
			"/api/convert-to-webp",
			content=b"garbage without boundaries",
			headers={"content-type": "multipart/form-data; boundary=xyz"},
		)

		assert res.status_code == 500
		assert res.json() == {"error": "Error parsing the files"}
		assert scratch_files(scratch_dir) == []


@pytest.mark.parametrize("endpoint", ENDPOINTS)
class TestUploadValidation:
	def test_text_file_renamed_to_jpg(self, api_client, scratch_dir, endpoint):
		res = api_client.post(endpoint, files={"image": ("notes.jpg", b"hello world", "text/plain")})

		assert res.status_code == 400
		assert res.json() == {"error": NOT_ALLOWED}
		assert scratch_files(scratch_dir) == []

	def test_empty_file(self, api_client, scratch_dir, endpoint):
		res = api_client.post(endpoint, files={"image": ("empty.png", b"", "image/png")})

		assert res.status_code == 400
		assert res.json() == {"error": NOT_ALLOWED}
		assert scratch_files(scratch_dir) == []

	def test_missing_image_field(self, api_client, scratch_dir, endpoint, png_without_icc):
		res = api_client.post(endpoint, files={"picture": ("graphic.png", png_without_icc, "image/png")})

		assert res.status_code == 400
		assert res.json() == {"error": "No file uploaded"}
		assert scratch_files(scratch_dir) == []

	def test_form_fields_only(self, api_client, endpoint):
		res = api_client.post(endpoint, data={"image": "not a file"}, files={"other": ("a.txt", b"x", "text/plain")})

		assert res.status_code == 400
		assert res.json() == {"error": "No file uploaded"}

	def test_wrong_method(self, api_client, endpoint):
		res = api_client.get(endpoint)

		assert res.status_code == 405
		assert res.json() == {"error": "Method not allowed"}

	def test_upload_over_limit(self, scratch_dir, endpoint, png_without_icc):
		settings = Settings(scratch_dir=scratch_dir, max_upload_bytes=len(png_without_icc) - 1)
		with TestClient(create_app(settings)) as client:
			res = client.post(endpoint, files={"image": ("graphic.png", png_without_icc, "image/png")})

		assert res.status_code == 413
		assert res.json() == {"error": "Uploaded file exceeds the maximum allowed size"}
		assert scratch_files(scratch_dir) == []

	def test_upload_at_limit(self, scratch_dir, endpoint, png_without_icc):
		settings = Settings(scratch_dir=scratch_dir, max_upload_bytes=len(png_without_icc))
		with TestClient(create_app(settings)) as client:
			res = client.post(endpoint, files={"image": ("graphic.png", png_without_icc, "image/png")})

		assert res.status_code == 200
		assert scratch_files(scratch_dir) == []


def test_health(api_client):
	assert api_client.get("/health").json() == {"status": "ok"}


def test_startup_creates_scratch_directory(tmp_path):
	scratch_dir = tmp_path / "nested" / "temp"
	app = create_app(Settings(scratch_dir=scratch_dir))
	assert not scratch_dir.exists()
	with TestClient(app):
		assert scratch_dir.is_dir()


def test_truncated_upload_is_discarded(api_client, scratch_dir):
	body = (
		b"--xyz\r\n"
		b'Content-Disposition: form-data; name="image"; filename="cut.png"\r\n'
		b"Content-Type: image/png\r\n\r\n"
		+ b"\x89PNG" * 2048
	)
	res = api_client.post(
		"/api/convert-to-webp",
		content=body,
		headers={"content-type": "multipart/form-data; boundary=xyz"},
	)

	assert res.status_code == 500
	assert res.json() == {"error": "Error parsing the files"}
	assert scratch_files(scratch_dir) == []


def test_multipart_content_type_is_case_insensitive(api_client, scratch_dir, png_without_icc):
	body = (
		b"--xyz\r\n"
		b'Content-Disposition: form-data; name="image"; filename="graphic.png"\r\n'
		b"Content-Type: image/png\r\n\r\n"
		+ png_without_icc
		+ b"\r\n--xyz--\r\n"
	)
	res = api_client.post(
		"/api/convert-to-webp",
		content=body,
		headers={"content-type": "Multipart/Form-Data; boundary=xyz"},
	)

	assert res.status_code == 200
	assert res.headers["content-type"] == "image/webp"
	assert scratch_files(scratch_dir) == []


def test_16_bit_png_upload_keeps_its_gradient(api_client, scratch_dir):
	samples = (np.arange(256, dtype=np.uint32) * 257).reshape(16, 16).astype(np.uint16)
	buf = io.BytesIO()
	Image.fromarray(samples).save(buf, format="PNG")

	res = api_client.post("/api/convert-to-webp", files={"image": ("deep.png", buf.getvalue(), "image/png")})

	assert res.status_code == 200
	with Image.open(io.BytesIO(res.content)) as converted:
		assert np.array_equal(np.asarray(converted.convert("L")), (samples >> 8).astype(np.uint8))
	assert scratch_files(scratch_dir) == []
