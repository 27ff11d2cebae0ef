from contextlib import asynccontextmanager
from urllib.parse import quote

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from volaticus import __version__
from volaticus.api.deps import get_db, get_request_info, get_upload_service, get_url_service
from volaticus.api.v1.endpoints import dashboard, files, links, tokens, users
from volaticus.core.config import settings, logger
from volaticus.core.exceptions import CatalogError, Internal, Unauthorized, VolaticusError
from volaticus.db.session import SessionLocal, init_db
from volaticus.services.analytics import ClickRecorder, RequestInfo
from volaticus.services.geoip import GeoIPResolver
from volaticus.services.upload_service import UploadService
from volaticus.services.url_service import URLService
from volaticus.services.worker import CleanupWorker
from volaticus.storage import create_storage


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    storage = create_storage(settings)
    geoip = GeoIPResolver(settings.GEOIP_DB_PATH)
    recorder = ClickRecorder(SessionLocal, max_workers=settings.CLICK_WORKERS)
    worker = CleanupWorker(
        SessionLocal,
        storage,
        cleanup_interval=settings.CLEANUP_INTERVAL,
        reconcile_interval=settings.RECONCILE_INTERVAL,
        grace=settings.RECONCILE_GRACE,
    )

    app.state.upload_service = UploadService(
        storage,
        max_size=settings.UPLOAD_MAX_SIZE,
        quota=settings.UPLOAD_USER_QUOTA,
        ttl=settings.UPLOAD_EXPIRES_IN,
        base_url=settings.BASE_URL,
    )
    app.state.url_service = URLService(
        geoip, recorder, settings.BASE_URL, cache_ttl=settings.URL_CACHE_TTL
    )
    worker.start()
    logger.info(f"Volaticus started with {settings.STORAGE_PROVIDER} storage")

    try:
        yield
    finally:
        worker.stop()
        recorder.shutdown(wait=True)
        geoip.close()
        storage.close()
        logger.info("Volaticus stopped")


app = FastAPI(
    title="Volaticus",
    description="""
    Self-hosted file sharing and URL shortening.

    ## Features
    * Upload files and share them under short references
    * Shorten URLs with optional vanity codes and expiry
    * Click analytics with GeoIP enrichment
    * API tokens for programmatic uploads

    ## Documentation
    * Swagger UI: [/docs](/docs)
    * ReDoc: [/redoc](/redoc)
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/openapi.json",
    license_info={
        "name": "MIT",
    },
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Url-Type"],
)

app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
app.include_router(tokens.router, prefix="/api/v1/tokens", tags=["tokens"])
app.include_router(files.router, prefix="/api/v1/files", tags=["files"])
app.include_router(links.router, prefix="/api/v1/links", tags=["links"])
app.include_router(dashboard.router, prefix="/api/v1/dashboard", tags=["dashboard"])


@app.exception_handler(VolaticusError)
async def volaticus_error_handler(request: Request, exc: VolaticusError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc}", exc_info=exc)
    headers = {"WWW-Authenticate": "Bearer"} if type(exc) is Unauthorized else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
    error = CatalogError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    error = Internal()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.get("/health", tags=["root"])
def health():
    return {"status": "ok", "version": __version__}


@app.get("/f/{reference}", tags=["files"])
def serve_file(
    reference: str,
    download: bool = False,
    db: Session = Depends(get_db),
    service: UploadService = Depends(get_upload_service),
):
    """
    Stream an uploaded file.

    ``?download=true`` asks the browser to save it under its original name.
    """
    resolved = service.resolve(db, reference)
    headers = resolved.blob.headers()
    if download:
        headers["Content-Disposition"] = f"attachment; filename*=utf-8''{quote(resolved.item.original_name)}"
    return StreamingResponse(resolved.blob.chunks, media_type=resolved.blob.content_type, headers=headers)


@app.get("/s/{short_code}", tags=["redirect"])
def redirect_to_url(
    short_code: str,
    db: Session = Depends(get_db),
    info: RequestInfo = Depends(get_request_info),
    service: URLService = Depends(get_url_service),
):
    target = service.resolve_short_url(db, short_code, info)
    return RedirectResponse(target, status_code=307)


def run():
    uvicorn.run("volaticus.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
