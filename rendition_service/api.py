"""
FastAPI layer exposing the rendition pipeline.

Endpoints:
 - GET /health, GET /api/health
 - POST /upload
 - GET /images/{filename}
 - POST /download-all
"""

from __future__ import annotations

from functools import lru_cache
import logging
from pathlib import Path
from typing import Dict, List, Optional
import uuid

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .archive import build_archive
from .errors import (
    FileTooLargeError,
    InvalidKeyError,
    StorageError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from .models import SourceImage
from .pipeline import cleanup_sources, process_batch, purge_outputs, validate_batch_size
from .storage import OutputStore, build_store, content_type_for, validate_key

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

app = FastAPI(title="Image Rendition Service", version="0.1.0")


class ImageEntry(BaseModel):
    originalName: str
    files: Dict[str, str]
    error: Optional[str] = None


class UploadResponse(BaseModel):
    message: str
    images: List[ImageEntry]


class DownloadAllRequest(BaseModel):
    files: List[str]


def get_settings() -> config.Settings:
    return config.get_settings()


@lru_cache()
def _cached_store() -> OutputStore:
    return build_store(config.get_settings())


def get_store() -> OutputStore:
    try:
        return _cached_store()
    except StorageError as exc:
        logger.exception("Output store unavailable: %s", exc)
        raise HTTPException(status_code=500, detail="Output storage is unavailable") from exc


@app.exception_handler(ValidationError)
async def _validation_error_handler(request, exc: ValidationError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _request_shape_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Malformed request body"})


def _stage_upload(upload: UploadFile, upload_dir: Path, max_bytes: int) -> SourceImage:
    """Copy one multipart file to the staging dir, enforcing the size cap."""
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise UnsupportedMediaTypeError("Only image files are allowed")

    path = upload_dir / uuid.uuid4().hex
    written = 0
    try:
        with path.open("wb") as handle:
            while True:
                chunk = upload.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise FileTooLargeError(
                        f"{upload.filename} exceeds the {max_bytes} byte upload limit"
                    )
                handle.write(chunk)
    except Exception:  # noqa: BLE001
        path.unlink(missing_ok=True)
        raise
    return SourceImage(logical_name=upload.filename or path.name, path=path, size_bytes=written)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/health")
def api_health():
    return {"status": "ok", "message": "Server is running"}


@app.post("/upload", response_model=UploadResponse, response_model_exclude_none=True)
def upload(
    images: Optional[List[UploadFile]] = File(None),
    settings: config.Settings = Depends(get_settings),
    store: OutputStore = Depends(get_store),
):
    images = images or []
    validate_batch_size(len(images), settings.max_batch_size)

    try:
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.exception("Cannot create upload directory: %s", exc)
        raise HTTPException(status_code=500, detail="Upload staging is unavailable") from exc

    sources: List[SourceImage] = []
    try:
        for item in images:
            sources.append(_stage_upload(item, settings.upload_dir, settings.max_upload_bytes))
    except ValidationError:
        cleanup_sources(sources)
        raise
    except OSError as exc:
        cleanup_sources(sources)
        logger.exception("Failed to stage upload: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to store upload") from exc

    try:
        if settings.purge_outputs_on_upload:
            purge_outputs(store)
        manifest = process_batch(
            sources,
            store,
            max_batch_size=settings.max_batch_size,
            max_workers=settings.max_parallel_transcodes,
        )
    except StorageError as exc:
        logger.exception("Batch failed at storage level: %s", exc)
        raise HTTPException(status_code=500, detail="Output storage is unavailable") from exc
    finally:
        cleanup_sources(sources)

    return UploadResponse(
        message=manifest.message,
        images=[
            ImageEntry(
                originalName=entry.original_name,
                files=entry.as_public_files(),
                error=entry.error,
            )
            for entry in manifest.entries
        ],
    )


@app.get("/images/{filename}")
def get_image(
    filename: str,
    download: bool = Query(False),
    store: OutputStore = Depends(get_store),
):
    try:
        validate_key(filename)
        data = store.read(filename)
    except (KeyError, InvalidKeyError) as exc:
        logger.info("File not found: %s", filename)
        raise HTTPException(status_code=404, detail="File not found") from exc
    except StorageError as exc:
        logger.exception("Error reading %s: %s", filename, exc)
        raise HTTPException(status_code=500, detail="Error reading file") from exc

    headers = {}
    if download:
        headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return Response(content=data, media_type=content_type_for(filename), headers=headers)


@app.post("/download-all")
def download_all(
    body: DownloadAllRequest,
    settings: config.Settings = Depends(get_settings),
    store: OutputStore = Depends(get_store),
):
    try:
        archive_bytes = build_archive(body.files, store)
    except StorageError as exc:
        logger.exception("Error creating archive: %s", exc)
        raise HTTPException(status_code=500, detail="Error creating archive") from exc

    return Response(
        content=archive_bytes,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{settings.archive_filename}"'},
    )


# Registered last so the API routes above take precedence over static files.
if settings.static_dir and Path(settings.static_dir).is_dir():
    app.mount("/", StaticFiles(directory=str(settings.static_dir), html=True), name="static")
