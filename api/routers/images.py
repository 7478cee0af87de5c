from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from api.services.errors import MalformedRequest
from api.services.metadata import read_color_profile
from api.services.streaming import stream_conversion


router = APIRouter(prefix="/api", tags=["images"])


@router.post("/read-icc", summary="Read the embedded ICC colour profile of an uploaded image")
async def read_icc(request: Request):
	state = request.app.state
	with state.scratch.request_files() as files:
		try:
			upload = await state.validator.parse(request, files)
		except MalformedRequest as e:
			raise MalformedRequest("Form parsing error") from e
		profile = await run_in_threadpool(read_color_profile, upload)
		return profile.to_payload()


@router.post("/convert-to-webp", summary="Convert an uploaded image to lossless WebP, keeping its ICC profile")
async def convert_to_webp(request: Request) -> Response:
	state = request.app.state
	files = state.scratch.request_files()
	handed_off = False
	try:
		upload = await state.validator.parse(request, files)
		result = await state.engine.convert(upload, files)
		response = stream_conversion(result, upload, files, chunk_size=state.settings.stream_chunk_size)
		handed_off = True
		return response
	finally:
		# Once handed off, the streaming response releases the files itself
		if not handed_off:
			files.release_all()
