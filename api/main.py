import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.config import Settings
from api.routers.images import router as images_router
from api.services.conversion import ConversionEngine
from api.services.errors import MethodNotAllowed, PipelineError
from api.services.scratch import ScratchSpace
from api.services.uploads import UploadValidator

logging.basicConfig(
	level=logging.INFO,
	format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	settings: Settings = app.state.settings
	level = getattr(logging, settings.log_level.upper(), None)
	if isinstance(level, int):
		logging.getLogger().setLevel(level)

	scratch = ScratchSpace(settings.scratch_dir)
	if scratch.ensure_directory():
		logger.info("Scratch directory ready: %s", scratch.root)
	app.state.scratch = scratch
	app.state.validator = UploadValidator(
		allowed_types=settings.allowed_image_types,
		max_bytes=settings.max_upload_bytes,
	)
	app.state.engine = ConversionEngine(
		scratch,
		workers=settings.conversion_workers,
		timeout=settings.conversion_timeout,
	)

	yield

	app.state.engine.shutdown()
	logger.info("Application shutdown complete")


def _error_response(error: PipelineError, headers=None) -> JSONResponse:
	return JSONResponse({"error": error.message}, status_code=error.status_code, headers=headers)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
	return _error_response(exc)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
	if exc.status_code == 405:
		return _error_response(MethodNotAllowed(), headers=exc.headers)
	return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
	app = FastAPI(title="Lossless WebP Converter API", version="0.1.0", lifespan=lifespan)
	app.state.settings = settings or Settings.from_env()

	app.add_middleware(
		CORSMiddleware,
		allow_origins=app.state.settings.cors_origins,
		allow_credentials=False,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	app.add_exception_handler(PipelineError, pipeline_error_handler)
	app.add_exception_handler(StarletteHTTPException, http_error_handler)

	app.include_router(images_router)

	@app.get("/health")
	async def health() -> dict:
		return {"status": "ok"}

	return app


app = create_app()


if __name__ == "__main__":
	# Local dev server: uvicorn api.main:app --reload
	import uvicorn

	uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
