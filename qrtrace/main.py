
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .db import SqliteStorage, Storage
from .errors import (
    BatchIssuanceFailed,
    InvalidInput,
    NotFound,
    StorageError,
    TokenRejected,
)
from .geocoder import Geocoder, NominatimGeocoder
from .history import HistoryAggregator, history_to_dict
from .issuer import BatchIssuer
from .keys import SecretProvider, get_secret_provider
from .location_cache import LocationCache
from .logging_config import audit_log, configure_logging, set_request_id
from .models import ScanRequest, SignRequest
from .rate_limit import RateLimiter, client_key
from .records import Channel
from .scans import ScanRecorder
from .tokens import TokenCodec

logger = logging.getLogger(__name__)


@dataclass
class Services:
    storage: Storage
    codec: TokenCodec
    locations: LocationCache
    issuer: BatchIssuer
    scans: ScanRecorder
    history: HistoryAggregator
    sign_limiter: RateLimiter
    scan_limiter: RateLimiter


def build_services(
    storage: Optional[Storage] = None,
    secrets: Optional[SecretProvider] = None,
    geocoder: Optional[Geocoder] = None,
) -> Services:
    """Wire the core from configuration; any collaborator can be passed in."""
    if storage is None:
        storage = SqliteStorage(config.DB_PATH)
        storage.init()
    if secrets is None:
        secrets = get_secret_provider(config.SECRET_KEY, config.SECRET_PATH, config.is_production())
    if geocoder is None:
        geocoder = NominatimGeocoder(config.GEOCODER_URL, config.GEOCODER_USER_AGENT, config.GEOCODER_TIMEOUT)

    codec = TokenCodec(secrets, ttl_seconds=config.TOKEN_TTL_SECONDS)
    locations = LocationCache(geocoder, ttl_seconds=config.LOCATION_CACHE_TTL)
    return Services(
        storage=storage,
        codec=codec,
        locations=locations,
        issuer=BatchIssuer(codec, storage, max_batch_size=config.MAX_BATCH_SIZE),
        scans=ScanRecorder(codec, storage, locations),
        history=HistoryAggregator(storage),
        sign_limiter=RateLimiter(config.SIGN_RPM),
        scan_limiter=RateLimiter(config.SCAN_RPM),
    )


router = APIRouter(prefix="/api/products")


def _services(request: Request) -> Services:
    return request.app.state.services


def _rate_limit(request: Request, response: Response, limiter: RateLimiter, endpoint: str) -> None:
    client = client_key(request.headers, request.client.host if request.client else "anonymous")
    result = limiter.check(f"{endpoint}:{client}")
    if not result.allowed:
        audit_log.rate_limit_exceeded(client, endpoint)
        raise HTTPException(429, "RATE_LIMIT", headers={
            "Retry-After": str(max(1, math.ceil(result.retry_after))),
            "X-RateLimit-Remaining": "0",
        })
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)


@router.post("/sign")
def sign_batch(req: SignRequest, request: Request, response: Response):
    svc = _services(request)
    _rate_limit(request, response, svc.sign_limiter, "sign")
    batch = svc.issuer.issue_batch(req.name, req.station_id, req.count)
    return batch.to_dict()


def _scan(request: Request, response: Response, req: ScanRequest, channel: Channel):
    svc = _services(request)
    _rate_limit(request, response, svc.scan_limiter, channel.value)
    result = svc.scans.record_scan(req.token, req.latitude, req.longitude, channel)
    return result.to_dict()


@router.post("/scan")
def scan_consumer(req: ScanRequest, request: Request, response: Response):
    return _scan(request, response, req, Channel.CONSUMER)


@router.post("/seller-scan")
def scan_seller(req: ScanRequest, request: Request, response: Response):
    return _scan(request, response, req, Channel.SELLER)


@router.get("/scan-history")
def scan_history(request: Request, token: str = Query(...)):
    history = _services(request).history.get_history(token)
    return history_to_dict(history)


@router.get("/batch/{batch_id}/tokens")
def batch_tokens(batch_id: str, request: Request):
    return _services(request).issuer.get_batch_tokens(batch_id)


def _error(status: int, code: str, **fields) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": code, **fields})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidInput)
    def _invalid_input(request: Request, exc: InvalidInput):
        return _error(400, exc.code, field=exc.field, message=exc.message)

    @app.exception_handler(RequestValidationError)
    def _invalid_body(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in exc.errors()]
        return _error(400, InvalidInput.code, fields=fields)

    @app.exception_handler(TokenRejected)
    def _token_rejected(request: Request, exc: TokenRejected):
        return _error(403, exc.code, reason=exc.reason.value)

    @app.exception_handler(NotFound)
    def _not_found(request: Request, exc: NotFound):
        return _error(404, exc.code, message=str(exc))

    @app.exception_handler(BatchIssuanceFailed)
    def _batch_failed(request: Request, exc: BatchIssuanceFailed):
        return _error(500, exc.code, batchId=exc.batch_id, created=exc.created, requested=exc.requested)

    @app.exception_handler(StorageError)
    def _storage_error(request: Request, exc: StorageError):
        return _error(500, exc.code)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the HTTP application.

    With `services` given (tests) nothing is built from configuration at
    startup and logging is left alone.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON)
            failed = [name for name, ok in config.validate_config().items() if not ok]
            if failed:
                logger.warning("Configuration checks failed: %s", ", ".join(failed))
            app.state.services = build_services()
        yield

    app = FastAPI(title="qrtrace", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health")
    def health(request: Request):
        svc = _services(request)
        return {"status": "ok", "storage": svc.storage.stats(), "cachedLocations": len(svc.locations)}

    _install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
