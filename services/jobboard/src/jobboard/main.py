from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse
from listings.filtering import FilterSet, JobFilters, OpportunityFilters
from listings.models import Listing, Opportunity
from listings.pagination import DEFAULT_PAGE_SIZE, Page
from pydantic import BaseModel, EmailStr, Field, ValidationError

from jobboard.errors import (
    AuthorizationError,
    ListingFetchError,
    ListingNotFoundError,
    StoreOperationError,
)
from jobboard.fetcher import ListingFetcher
from jobboard.listing_view import ListingKind, ListingView
from jobboard.observability import MetricsSnapshot, MetricsStore, route_label
from jobboard.repository import JobBoardRepository
from jobboard.saved_jobs import SavedJobRecord, SavedJobSnapshot, SavedJobsStore
from jobboard.session import (
    DEFAULT_CREDENTIAL_TTL_SECONDS,
    REALM_EMPLOYER,
    REALM_SEEKER,
    REALM_SIGNUP_ATTRIBUTES,
    RealmConfig,
    RealmUser,
    Session,
    SessionProvider,
    SessionUser,
    parse_realm_users,
    require_authenticated,
)
from jobboard.view_counts import SessionViewMarkers, ViewCountAdapter, ViewRecorder
from jobboard.web import INDEX_HTML

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobboard", "jobboard.sqlite3")
DEFAULT_JOBS_ENDPOINT = "http://localhost:8002/jobs"
DEFAULT_OPPORTUNITIES_ENDPOINT = "http://localhost:8002/opportunities"
MAX_PAGE_SIZE = 100
SESSION_HEADER = "x-session-token"
BROWSING_SESSION_HEADER = "x-browsing-session"
LOGGER = logging.getLogger("jobboard.api")


class SignInRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    status: Literal["configuring", "unauthenticated", "authenticated"]
    realm: Literal["seeker", "employer"] | None = None
    user: SessionUser | None = None
    token: str | None = None
    expires_at: str | None = None
    signed_in_at: str | None = None


class RealmConfigResponse(BaseModel):
    realm: Literal["seeker", "employer"]
    signup_attributes: list[str]


class ProfileResponse(BaseModel):
    username: str
    name: str
    email: EmailStr | None = None
    realm: Literal["seeker", "employer"]
    attributes: dict[str, str]
    signed_in_at: str | None = None


class PageWindowResponse(BaseModel):
    start: int
    end: int
    total: int
    pages: list[int]
    previous_window_page: int | None = None
    next_window_page: int | None = None


class JobPageResponse(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    items: list[Listing]
    window: PageWindowResponse


class OpportunityPageResponse(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    items: list[Opportunity]
    window: PageWindowResponse


class JobDetailResponse(BaseModel):
    job: Listing
    view_counted: bool


class SavedJobsResponse(BaseModel):
    saved_jobs: list[SavedJobRecord]


def build_page_payload(page: Page) -> dict[str, object]:
    window = page.window
    return {
        "page": page.page,
        "page_size": page.page_size,
        "total_items": page.total_items,
        "total_pages": window.total,
        "items": page.items,
        "window": PageWindowResponse(
            start=window.start,
            end=window.end,
            total=window.total,
            pages=window.pages,
            previous_window_page=window.previous_window_page,
            next_window_page=window.next_window_page,
        ),
    }


def to_session_response(session: Session, *, include_token: bool = False) -> SessionResponse:
    credentials = session.credentials
    return SessionResponse(
        status=session.status,
        realm=session.realm,
        user=session.user,
        token=credentials.token if include_token and credentials else None,
        expires_at=credentials.expires_at if credentials else None,
        signed_in_at=session.signed_in_at,
    )


def build_filters(filter_type: type[FilterSet], values: dict[str, str]) -> FilterSet:
    try:
        return filter_type.from_mapping(values)
    except ValidationError as exc:
        messages = [str(error["msg"]) for error in exc.errors()]
        raise HTTPException(status_code=422, detail=messages) from exc


def load_realm_configs(
    realm_users: dict[str, dict[str, RealmUser]] | None = None,
) -> dict[str, RealmConfig]:
    if realm_users is None:
        realm_users = {}
        for realm, env_name in (
            (REALM_SEEKER, "JOBBOARD_SEEKER_USERS_JSON"),
            (REALM_EMPLOYER, "JOBBOARD_EMPLOYER_USERS_JSON"),
        ):
            raw_users = os.getenv(env_name, "").strip()
            realm_users[realm] = parse_realm_users(raw_users) if raw_users else {}

    return {
        realm: RealmConfig(
            realm=realm,
            signup_attributes=REALM_SIGNUP_ATTRIBUTES[realm],
            users=realm_users.get(realm, {}),
        )
        for realm in (REALM_SEEKER, REALM_EMPLOYER)
    }


def create_app(
    *,
    database_path: str | None = None,
    jobs_endpoint: str | None = None,
    opportunities_endpoint: str | None = None,
    realm_users: dict[str, dict[str, RealmUser]] | None = None,
    credential_ttl_seconds: int | None = None,
    page_size: int | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("JOBBOARD_DB_PATH", DEFAULT_DB_PATH)
    resolved_jobs_endpoint = jobs_endpoint or os.getenv(
        "JOBBOARD_JOBS_ENDPOINT", DEFAULT_JOBS_ENDPOINT
    )
    resolved_opportunities_endpoint = opportunities_endpoint or os.getenv(
        "JOBBOARD_OPPORTUNITIES_ENDPOINT", DEFAULT_OPPORTUNITIES_ENDPOINT
    )
    resolved_ttl = (
        credential_ttl_seconds
        if credential_ttl_seconds is not None
        else int(os.getenv("JOBBOARD_CREDENTIAL_TTL_SECONDS", str(DEFAULT_CREDENTIAL_TTL_SECONDS)))
    )
    resolved_page_size = (
        page_size
        if page_size is not None
        else int(os.getenv("JOBBOARD_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))
    )
    if resolved_ttl < 1:
        raise ValueError("Credential TTL must be a positive number of seconds.")
    if not 1 <= resolved_page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"Page size must be between 1 and {MAX_PAGE_SIZE}.")

    repository = JobBoardRepository(database_path=resolved_path)
    session_provider = SessionProvider(repository, credential_ttl_seconds=resolved_ttl)
    view_markers = SessionViewMarkers()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        session_provider.configure(load_realm_configs(realm_users))
        app.state.repository = repository
        app.state.session_provider = session_provider
        app.state.fetcher = ListingFetcher(
            resolved_jobs_endpoint,
            resolved_opportunities_endpoint,
        )
        app.state.saved_jobs = SavedJobsStore(repository)
        app.state.view_recorder = ViewRecorder(ViewCountAdapter(repository), view_markers)
        app.state.metrics = MetricsStore()
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="Job Board", version="0.3.0", lifespan=lifespan)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            request.app.state.metrics.observe(
                method=request.method,
                route=route_label(request),
                status_code=500,
                duration_ms=duration_ms,
            )
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            route=route_label(request),
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                }
            )
        )
        return response

    async def current_session(request: Request) -> Session:
        token = request.headers.get(SESSION_HEADER)
        return await run_in_threadpool(request.app.state.session_provider.get_session, token)

    async def require_session(request: Request) -> Session:
        session = await current_session(request)
        if session.status == "configuring":
            raise HTTPException(status_code=503, detail="Loading...")
        try:
            require_authenticated(session)
        except AuthorizationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return session

    async def store_session(request: Request) -> Session:
        session = await current_session(request)
        if session.status == "configuring":
            raise HTTPException(status_code=503, detail="Loading...")
        return session

    async def load_listing_view(
        request: Request,
        kind: ListingKind,
        *,
        query: str,
        filters: FilterSet,
        page: int,
        page_size: int | None,
    ) -> ListingView:
        view = ListingView(
            request.app.state.fetcher,
            kind,
            page_size=page_size or resolved_page_size,
        )
        view.search(query)
        view.apply_filters(filters)
        view.go_to_page(page)

        async def still_connected() -> bool:
            return not await request.is_disconnected()

        try:
            await view.load(is_interested=still_connected)
        finally:
            view.close()
        if view.error:
            request.app.state.metrics.record_event("listing_fetch_failed")
            raise HTTPException(status_code=502, detail=view.error)
        return view

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "jobboard"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return INDEX_HTML

    @app.get("/api/session", response_model=SessionResponse)
    async def get_session(request: Request) -> SessionResponse:
        return to_session_response(await current_session(request))

    @app.get("/auth/{realm}/config", response_model=RealmConfigResponse)
    async def realm_config(
        realm: Literal["seeker", "employer"],
        request: Request,
    ) -> RealmConfigResponse:
        provider: SessionProvider = request.app.state.session_provider
        if not provider.configured:
            raise HTTPException(status_code=503, detail="Loading...")
        config = provider.realm_config(realm)
        return RealmConfigResponse(realm=config.realm, signup_attributes=config.signup_attributes)

    @app.post("/auth/{realm}/sign-in", response_model=SessionResponse)
    async def sign_in(
        realm: Literal["seeker", "employer"],
        payload: SignInRequest,
        request: Request,
    ) -> SessionResponse:
        provider: SessionProvider = request.app.state.session_provider
        if not provider.configured:
            raise HTTPException(status_code=503, detail="Loading...")
        try:
            session = await run_in_threadpool(
                provider.sign_in,
                realm,
                payload.username,
                payload.password,
                current_token=request.headers.get(SESSION_HEADER),
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return to_session_response(session, include_token=True)

    @app.post("/auth/sign-out")
    async def sign_out(request: Request) -> dict[str, bool]:
        signed_out = await run_in_threadpool(
            request.app.state.session_provider.sign_out,
            request.headers.get(SESSION_HEADER),
        )
        return {"signed_out": signed_out}

    @app.get("/api/profile", response_model=ProfileResponse)
    async def profile(request: Request) -> ProfileResponse:
        session = await require_session(request)
        user = session.user
        return ProfileResponse(
            username=user.username,
            name=user.name,
            email=user.email,
            realm=session.realm,
            attributes=user.attributes,
            signed_in_at=session.signed_in_at,
        )

    @app.get("/api/jobs", response_model=JobPageResponse)
    async def list_jobs(
        request: Request,
        q: str = "",
        location: str = "",
        company: str = "",
        work_type: str = "",
        min_salary: str = "",
        max_salary: str = "",
        experience_level: str = "",
        page: int = Query(default=1, ge=1),
        page_size: int | None = Query(default=None, ge=1, le=MAX_PAGE_SIZE),
    ) -> JobPageResponse:
        await require_session(request)
        filters = build_filters(
            JobFilters,
            {
                "location": location,
                "company": company,
                "work_type": work_type,
                "min_salary": min_salary,
                "max_salary": max_salary,
                "experience_level": experience_level,
            },
        )
        view = await load_listing_view(
            request,
            "jobs",
            query=q,
            filters=filters,
            page=page,
            page_size=page_size,
        )
        return JobPageResponse(**build_page_payload(view.visible_page()))

    @app.get("/api/jobs/{job_id}", response_model=JobDetailResponse)
    async def job_detail(job_id: str, request: Request) -> JobDetailResponse:
        session = await require_session(request)
        try:
            job = await request.app.state.fetcher.fetch_job(job_id)
        except ListingNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ListingFetchError as exc:
            request.app.state.metrics.record_event("listing_fetch_failed")
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        recorder: ViewRecorder = request.app.state.view_recorder
        browsing_session = (
            request.headers.get(BROWSING_SESSION_HEADER) or session.credentials.credential_id
        )
        updated = await run_in_threadpool(
            recorder.record_view,
            browsing_session,
            job_id,
            credentials=session.credentials,
        )
        if updated is not None:
            request.app.state.metrics.record_event("view_counted")
            job = job.model_copy(update={"views": updated})
        else:
            stored_views = await run_in_threadpool(recorder.adapter.current_views, job_id)
            if stored_views is not None:
                job = job.model_copy(update={"views": stored_views})
        return JobDetailResponse(job=job, view_counted=updated is not None)

    @app.get("/api/opportunities", response_model=OpportunityPageResponse)
    async def list_opportunities(
        request: Request,
        q: str = "",
        location: str = "",
        institution: str = "",
        discipline: str = "",
        page: int = Query(default=1, ge=1),
        page_size: int | None = Query(default=None, ge=1, le=MAX_PAGE_SIZE),
    ) -> OpportunityPageResponse:
        await require_session(request)
        filters = build_filters(
            OpportunityFilters,
            {"location": location, "institution": institution, "discipline": discipline},
        )
        view = await load_listing_view(
            request,
            "opportunities",
            query=q,
            filters=filters,
            page=page,
            page_size=page_size,
        )
        return OpportunityPageResponse(**build_page_payload(view.visible_page()))

    @app.get("/api/opportunities/{opportunity_id}", response_model=Opportunity)
    async def opportunity_detail(opportunity_id: str, request: Request) -> Opportunity:
        await require_session(request)
        try:
            return await request.app.state.fetcher.fetch_opportunity(opportunity_id)
        except ListingNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ListingFetchError as exc:
            request.app.state.metrics.record_event("listing_fetch_failed")
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @app.get("/api/saved-jobs", response_model=SavedJobsResponse)
    async def list_saved_jobs(
        request: Request,
        order: Literal["store", "recent"] = Query(default="store"),
    ) -> SavedJobsResponse:
        session = await store_session(request)
        try:
            records = await run_in_threadpool(
                request.app.state.saved_jobs.list_saved,
                session.user.user_id if session.user else None,
                credentials=session.credentials,
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        except StoreOperationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        if order == "recent":
            records = sorted(records, key=lambda record: record.saved_at, reverse=True)
        return SavedJobsResponse(saved_jobs=records)

    @app.post("/api/saved-jobs")
    async def save_job(payload: SavedJobSnapshot, request: Request) -> dict[str, bool]:
        session = await store_session(request)
        try:
            ack = await run_in_threadpool(
                request.app.state.saved_jobs.save,
                session.user.user_id if session.user else None,
                payload,
                credentials=session.credentials,
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        except StoreOperationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        request.app.state.metrics.record_event("job_saved")
        return ack

    @app.delete("/api/saved-jobs/{job_id}")
    async def remove_saved_job(job_id: str, request: Request) -> dict[str, bool]:
        session = await store_session(request)
        try:
            return await run_in_threadpool(
                request.app.state.saved_jobs.remove,
                session.user.user_id if session.user else None,
                job_id,
                credentials=session.credentials,
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        except StoreOperationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    return app


app = create_app()
