from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import redis
from common.utils import now_utc_iso
from fastapi import Depends, FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from jobrec.cache import ResultCache
from jobrec.config import Settings
from jobrec.errors import (
    AuthenticationFailed,
    ConfigurationError,
    ConflictError,
    ErrorKind,
    JobRecError,
    NotAuthorized,
    ValidationFailed,
)
from jobrec.job_search import JobSearchClient
from jobrec.keywords import KeywordExtractionClient
from jobrec.models import (
    HistoryRequest,
    JobListing,
    LoginRequest,
    LoginResponse,
    MetricsSnapshot,
    RegisterRequest,
    RegistrationOutcome,
    ResultResponse,
)
from jobrec.repository import JobRecRepository
from jobrec.search import JobSearchProvider, SearchService, parse_search_query
from jobrec.validation import is_not_empty, validate_and_sanitize_user_id, validate_registration

LOGGER = logging.getLogger("jobrec.api")
INTERNAL_ERROR_MESSAGE = "Internal server error occurred"


@dataclass
class RouteStats:
    count: int = 0
    statuses: Counter[str] = field(default_factory=Counter)
    latency_ms_sum: float = 0.0
    latency_ms_max: float = 0.0

    def as_dict(self) -> dict[str, float | int]:
        return {
            "count": self.count,
            **self.statuses,
            "latency_ms_avg": self.latency_ms_sum / self.count if self.count else 0.0,
            "latency_ms_max": self.latency_ms_max,
        }


class MetricsStore:
    """Request counts per route and failures per ErrorKind.

    Failures are recorded by the exception handlers, so a 4xx or 5xx that a
    handler returned directly counts toward its route but not toward a kind.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._routes: dict[str, RouteStats] = {}
        self._failures: Counter[str] = Counter()

    def observe(self, route: str, status_code: int, duration_ms: float) -> None:
        with self._lock:
            stats = self._routes.setdefault(route, RouteStats())
            stats.count += 1
            stats.statuses[f"{status_code // 100}xx"] += 1
            stats.latency_ms_sum += duration_ms
            stats.latency_ms_max = max(stats.latency_ms_max, duration_ms)

    def record_failure(self, kind: ErrorKind) -> None:
        with self._lock:
            self._failures[kind.name] += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals={
                    "requests": sum(stats.count for stats in self._routes.values()),
                    "failures": sum(self._failures.values()),
                },
                routes={route: stats.as_dict() for route, stats in self._routes.items()},
                failures_by_kind=dict(self._failures),
            )


def build_job_search_client(settings: Settings) -> JobSearchClient:
    keyword_client = KeywordExtractionClient(
        api_key=settings.edenai_key,
        url=settings.edenai_url,
        provider=settings.edenai_provider,
        timeout=settings.http_timeout_seconds,
    )
    return JobSearchClient(
        api_key=settings.serpapi_key,
        base_url=settings.serpapi_base_url,
        keyword_extractor=keyword_client,
        default_keyword=settings.default_keyword,
        results_limit=settings.search_results_limit,
        keywords_per_listing=settings.keywords_per_listing,
        timeout=settings.http_timeout_seconds,
    )


def format_validation_errors(exc: RequestValidationError) -> str:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid request body"


def create_app(
    settings: Settings | None = None,
    *,
    database_path: str | None = None,
    cache_client_factory: Callable[[], Any] | None = None,
    job_search_client: JobSearchProvider | None = None,
) -> FastAPI:
    resolved_settings = settings or Settings.from_env()
    if database_path is not None:
        resolved_settings = resolved_settings.model_copy(update={"database_path": database_path})

    redis_pool: redis.ConnectionPool | None = None
    if cache_client_factory is None:
        redis_pool = redis.ConnectionPool(
            host=resolved_settings.redis_host,
            port=resolved_settings.redis_port,
            password=resolved_settings.redis_password or None,
            db=resolved_settings.redis_db,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            decode_responses=True,
        )
        cache_client_factory = partial(redis.Redis, connection_pool=redis_pool)

    search_service = SearchService(
        job_search_client or build_job_search_client(resolved_settings),
        recommendation_keyword_limit=resolved_settings.recommendation_keyword_limit,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = resolved_settings.missing_required()
        if missing:
            if resolved_settings.is_production:
                raise ConfigurationError(
                    technical_message=f"missing required settings: {', '.join(missing)}"
                )
            LOGGER.warning(json.dumps({"event": "config_incomplete", "missing": missing}))
        LOGGER.info(json.dumps({"event": "startup", **resolved_settings.describe()}))

        repository = JobRecRepository(resolved_settings.database_path)
        await run_in_threadpool(repository.connect)
        try:
            await run_in_threadpool(repository.create_schema)
        finally:
            await run_in_threadpool(repository.close)

        app.state.settings = resolved_settings
        app.state.metrics = MetricsStore()
        app.state.search_service = search_service
        app.state.cache_client_factory = cache_client_factory
        try:
            yield
        finally:
            if redis_pool is not None:
                redis_pool.disconnect()

    app = FastAPI(title="JobRec Search", version="1.0.0", lifespan=lifespan)

    def route_of(request: Request) -> str:
        return f"{request.method} {request.url.path}"

    def request_id_of(request: Request) -> str | None:
        return getattr(request.state, "request_id", None)

    def finish_request(
        request: Request,
        status_code: int,
        started: float,
        *,
        level: int = logging.INFO,
        exc_info: bool = False,
        **extra: Any,
    ) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        route = route_of(request)
        request.app.state.metrics.observe(route, status_code, duration_ms)
        LOGGER.log(
            level,
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id_of(request),
                    "route": route,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 3),
                    **extra,
                }
            ),
            exc_info=exc_info,
        )

    def failure_response(request: Request, kind: ErrorKind, message: str) -> JSONResponse:
        request.app.state.metrics.record_failure(kind)
        headers: dict[str, str] = {}
        if request_id := request_id_of(request):
            headers["x-request-id"] = request_id
        return JSONResponse(
            status_code=kind.status_code,
            content={"result": message},
            headers=headers,
        )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            finish_request(
                request, 500, started, level=logging.ERROR, exc_info=True, error=str(exc)
            )
            return failure_response(request, ErrorKind.INTERNAL, INTERNAL_ERROR_MESSAGE)

        response.headers["x-request-id"] = request.state.request_id
        finish_request(
            request,
            response.status_code,
            started,
            source_ip=request.client.host if request.client else None,
        )
        return response

    @app.exception_handler(JobRecError)
    async def jobrec_error_handler(request: Request, exc: JobRecError) -> JSONResponse:
        LOGGER.log(
            logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            json.dumps(
                {
                    "event": "request_failed",
                    "request_id": request_id_of(request),
                    "route": route_of(request),
                    "kind": exc.kind.name,
                    "error": exc.technical_message,
                }
            ),
        )
        return failure_response(request, exc.kind, exc.user_message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        message = format_validation_errors(exc)
        LOGGER.warning(
            json.dumps(
                {
                    "event": "request_invalid",
                    "request_id": request_id_of(request),
                    "route": route_of(request),
                    "error": message,
                }
            )
        )
        return failure_response(request, ErrorKind.VALIDATION, message)

    def get_repository(request: Request) -> Iterator[JobRecRepository]:
        repository = JobRecRepository(request.app.state.settings.database_path)
        repository.connect()
        try:
            yield repository
        finally:
            repository.close()

    def get_cache(request: Request) -> Iterator[ResultCache]:
        settings: Settings = request.app.state.settings
        cache = ResultCache(
            request.app.state.cache_client_factory(),
            ttl_seconds=settings.cache_ttl_seconds,
            favorites_ttl_seconds=settings.favorites_cache_ttl_seconds,
        )
        try:
            yield cache
        finally:
            cache.close()

    def session_token(request: Request) -> str | None:
        return request.cookies.get(request.app.state.settings.session_cookie_name)

    async def require_session(request: Request, repository: JobRecRepository) -> str:
        token = session_token(request)
        session_user = None
        if token:
            session_user = await run_in_threadpool(repository.resolve_session, token)
        if session_user is None:
            raise NotAuthorized("Session Invalid", "no live session for request")
        return session_user

    def ensure_session_user(session_user: str, user_id: str) -> None:
        if user_id != session_user:
            raise NotAuthorized(
                "Session Invalid",
                f"session user {session_user} does not match requested user {user_id}",
            )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "jobrec"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.post("/register", response_model=ResultResponse)
    async def register(
        payload: RegisterRequest,
        repository: JobRecRepository = Depends(get_repository),
    ) -> ResultResponse:
        validation = validate_registration(
            payload.user_id,
            payload.password,
            payload.first_name,
            payload.last_name,
        )
        if validation.has_errors:
            raise ValidationFailed(validation.errors)

        outcome = await run_in_threadpool(
            repository.add_user,
            payload.user_id.strip(),
            payload.password,
            payload.first_name.strip(),
            payload.last_name.strip(),
        )
        if outcome is RegistrationOutcome.ALREADY_EXISTS:
            raise ConflictError("User already exists", f"user_id={payload.user_id} exists")
        return ResultResponse(result="OK")

    @app.post("/login", response_model=LoginResponse)
    async def login(
        payload: LoginRequest,
        request: Request,
        response: Response,
        repository: JobRecRepository = Depends(get_repository),
    ) -> LoginResponse:
        if not is_not_empty(payload.user_id) or not is_not_empty(payload.password):
            raise ValidationFailed("User ID and password are required")
        user_id = payload.user_id.strip()

        verified = await run_in_threadpool(repository.verify_login, user_id, payload.password)
        if not verified:
            raise AuthenticationFailed(
                "Invalid user ID or password",
                f"login rejected for user_id={user_id}",
            )

        settings: Settings = request.app.state.settings
        token = await run_in_threadpool(
            repository.create_session,
            user_id,
            settings.session_ttl_seconds,
        )
        name = await run_in_threadpool(repository.get_full_name, user_id)
        response.set_cookie(
            settings.session_cookie_name,
            token,
            max_age=settings.session_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )
        return LoginResponse(status="OK", user_id=user_id, name=name)

    @app.get("/logout", response_model=ResultResponse)
    async def logout(
        request: Request,
        response: Response,
        repository: JobRecRepository = Depends(get_repository),
    ) -> ResultResponse:
        token = session_token(request)
        if token:
            await run_in_threadpool(repository.delete_session, token)
        response.delete_cookie(request.app.state.settings.session_cookie_name)
        return ResultResponse(result="OK")

    @app.get("/search", response_model=list[JobListing], response_model_exclude_none=True)
    async def search(
        request: Request,
        user_id: str | None = None,
        lat: str | None = None,
        lon: str | None = None,
        keyword: str | None = None,
        repository: JobRecRepository = Depends(get_repository),
        cache: ResultCache = Depends(get_cache),
    ) -> list[JobListing]:
        session_user = await require_session(request, repository)
        query = parse_search_query(user_id, lat, lon, keyword)
        ensure_session_user(session_user, query.user_id)
        return await run_in_threadpool(
            request.app.state.search_service.search,
            repository,
            cache,
            query,
        )

    @app.post("/search", status_code=405)
    async def search_post() -> JSONResponse:
        return JSONResponse(
            status_code=405,
            content={"result": "POST method not supported for search operations"},
            headers={"Allow": "GET"},
        )

    @app.post("/history", response_model=ResultResponse)
    async def set_history(
        payload: HistoryRequest,
        request: Request,
        repository: JobRecRepository = Depends(get_repository),
        cache: ResultCache = Depends(get_cache),
    ) -> ResultResponse:
        session_user = await require_session(request, repository)
        user_id = validate_and_sanitize_user_id(payload.user_id)
        if not user_id:
            raise ValidationFailed("Invalid user ID format")
        ensure_session_user(session_user, user_id)
        await run_in_threadpool(
            request.app.state.search_service.update_favorites,
            repository,
            cache,
            user_id,
            payload.favorite,
        )
        return ResultResponse(result="SUCCESS")

    @app.get("/history", response_model=list[JobListing], response_model_exclude_none=True)
    async def get_history(
        request: Request,
        user_id: str | None = None,
        repository: JobRecRepository = Depends(get_repository),
        cache: ResultCache = Depends(get_cache),
    ) -> list[JobListing]:
        session_user = await require_session(request, repository)
        sanitized_user_id = validate_and_sanitize_user_id(user_id)
        if not sanitized_user_id:
            raise ValidationFailed("Invalid user ID format")
        ensure_session_user(session_user, sanitized_user_id)
        return await run_in_threadpool(
            request.app.state.search_service.favorites,
            repository,
            cache,
            sanitized_user_id,
        )

    @app.get("/recommendation", response_model=list[JobListing], response_model_exclude_none=True)
    async def recommendation(
        request: Request,
        user_id: str | None = None,
        lat: str | None = None,
        lon: str | None = None,
        repository: JobRecRepository = Depends(get_repository),
        cache: ResultCache = Depends(get_cache),
    ) -> list[JobListing]:
        session_user = await require_session(request, repository)
        query = parse_search_query(user_id, lat, lon)
        ensure_session_user(session_user, query.user_id)
        return await run_in_threadpool(
            request.app.state.search_service.recommend,
            repository,
            cache,
            query,
        )

    return app


app = create_app()
