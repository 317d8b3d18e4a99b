from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import Awaitable, Callable
from datetime import datetime
import logging

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from gateway.api.handlers.cancellations import (
    cancel_user_handler,
    is_canceled_handler,
    list_canceled_users_handler,
    remove_cancellation_handler,
)
from gateway.api.handlers.deps import ApiDeps
from gateway.api.handlers.listings import create_listing_handler, list_listings_handler
from gateway.api.handlers.messages import (
    claim_pending_handler,
    create_message_handler,
    get_message_handler,
    list_messages_handler,
    report_outcome_handler,
    valid_since_handler,
)
from gateway.api.handlers.sweeps import SweepNotFoundError, run_sweep_handler, sweep_metrics, sweep_status_handler
from gateway.api.schemas import (
    CanceledUserListResponse,
    CanceledUserResponse,
    CancelUserRequest,
    CancelUserResponse,
    CreateListingRequest,
    CreateMessageRequest,
    ErrorResponse,
    HealthResponse,
    IsCanceledResponse,
    ListingResponse,
    ListListingsResponse,
    MessageListResponse,
    MessageResponse,
    PendingMessagesResponse,
    ReadyResponse,
    ReportOutcomeRequest,
    SweepRunResponse,
    SweepStatusResponse,
    ValidSinceResponse,
)
from gateway.domain.errors import (
    CancellationNotFoundError,
    CascadePartialError,
    DomainDependencyError,
    DomainInvariantError,
    DomainValidationError,
    DuplicateMessageError,
    MessageNotFoundError,
)
from gateway.domain.models import MessageStatus


def build_app(
    role: str,
    run_id: str,
    api_deps: ApiDeps | None = None,
    serve_queue: bool = True,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    sweeps = api_deps.sweeps if api_deps is not None else {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        del app
        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        for task in sweeps.values():
            task.start(role=role, run_id=run_id, logger=logger)

        yield

        for task in sweeps.values():
            await task.stop()

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="squadfinders-gateway", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(DuplicateMessageError)
    async def _duplicate(request: Request, exc: DuplicateMessageError) -> JSONResponse:
        del request
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": "Duplicate message detected",
                "message": str(exc),
                "existing_message_id": exc.existing_message_id,
            },
        )

    @app.exception_handler(DomainValidationError)
    async def _validation(request: Request, exc: DomainValidationError) -> JSONResponse:
        del request
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})

    @app.exception_handler(MessageNotFoundError)
    @app.exception_handler(CancellationNotFoundError)
    async def _not_found(request: Request, exc: Exception) -> JSONResponse:
        del request
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(DomainInvariantError)
    async def _conflict(request: Request, exc: DomainInvariantError) -> JSONResponse:
        del request
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(CascadePartialError)
    async def _partial(request: Request, exc: CascadePartialError) -> JSONResponse:
        del request
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": str(exc),
                "updates": {
                    "messages_matched": exc.messages_matched,
                    "messages_canceled": exc.messages_modified,
                },
            },
        )

    @app.exception_handler(DomainDependencyError)
    async def _unavailable(request: Request, exc: DomainDependencyError) -> JSONResponse:
        del request
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    def _deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role, mode=_mode())

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        metrics = [sweep_metrics(task) for task in sweeps.values()]
        sweeps_ready = all(task.running and task.state.started for task in sweeps.values() if task.enabled)
        return ReadyResponse(
            status="ready",
            role=role,
            mode=_mode(),
            sweeps_ready=sweeps_ready,
            sweeps=metrics,
        )

    if serve_queue:
        @app.post(
            "/messages",
            response_model=MessageResponse,
            status_code=status.HTTP_201_CREATED,
            responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
            tags=["Messages"],
        )
        async def create_message(request: CreateMessageRequest) -> MessageResponse:
            return await create_message_handler(request=request, api_deps=_deps())

        @app.get("/messages", response_model=MessageListResponse, tags=["Messages"])
        async def list_messages(
            page: int = Query(default=1, ge=1),
            limit: int = Query(default=100, ge=1, le=1000),
            group_username: str | None = Query(default=None),
            sender_username: str | None = Query(default=None),
            is_valid: bool | None = Query(default=None),
            is_lfg: bool | None = Query(default=None),
            ai_status: MessageStatus | None = Query(default=None),
        ) -> MessageListResponse:
            return await list_messages_handler(
                page=page,
                limit=limit,
                group_username=group_username,
                sender_username=sender_username,
                is_valid=is_valid,
                is_lfg=is_lfg,
                status=ai_status,
                api_deps=_deps(),
            )

        @app.get(
            "/messages/pending",
            response_model=PendingMessagesResponse,
            responses={422: {"model": ErrorResponse}},
            tags=["Messages"],
        )
        async def claim_pending(limit: int | None = Query(default=None, ge=1)) -> PendingMessagesResponse:
            return await claim_pending_handler(limit=limit, api_deps=_deps())

        @app.get(
            "/messages/valid-since",
            response_model=ValidSinceResponse,
            responses={400: {"model": ErrorResponse}},
            tags=["Messages"],
        )
        async def valid_since(timestamp: str | None = Query(default=None)) -> ValidSinceResponse:
            if not timestamp:
                raise HTTPException(status_code=400, detail="Timestamp query parameter is required.")
            try:
                since = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
            except ValueError as exc:
                raise HTTPException(
                    status_code=400,
                    detail="Invalid timestamp format. Please use ISO 8601 format.",
                ) from exc
            return await valid_since_handler(since=since, api_deps=_deps())

        @app.get(
            "/messages/{message_id}",
            response_model=MessageResponse,
            responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
            tags=["Messages"],
        )
        async def get_message(message_id: str) -> MessageResponse:
            return await get_message_handler(message_id=_parse_message_id(message_id), api_deps=_deps())

        @app.post(
            "/messages/{message_id}/outcome",
            response_model=MessageResponse,
            responses={
                400: {"model": ErrorResponse},
                404: {"model": ErrorResponse},
                409: {"model": ErrorResponse},
                422: {"model": ErrorResponse},
            },
            tags=["Messages"],
        )
        async def report_outcome(message_id: str, request: ReportOutcomeRequest) -> MessageResponse:
            return await report_outcome_handler(
                message_id=_parse_message_id(message_id),
                request=request,
                api_deps=_deps(),
            )

        @app.post(
            "/canceled-users",
            response_model=CancelUserResponse,
            responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
            tags=["Canceled users"],
        )
        async def cancel_user(request: CancelUserRequest) -> JSONResponse:
            if not request.user_id and not request.username:
                raise HTTPException(status_code=400, detail="Either user_id or username is required")
            response = await cancel_user_handler(request=request, api_deps=_deps())
            return JSONResponse(
                status_code=status.HTTP_201_CREATED if response.created else status.HTTP_200_OK,
                content=response.model_dump(mode="json"),
            )

        @app.get("/canceled-users", response_model=CanceledUserListResponse, tags=["Canceled users"])
        async def list_canceled_users(
            page: int = Query(default=1, ge=1),
            limit: int = Query(default=100, ge=1, le=1000),
            username: str | None = Query(default=None),
        ) -> CanceledUserListResponse:
            return await list_canceled_users_handler(page=page, limit=limit, username=username, api_deps=_deps())

        @app.get(
            "/canceled-users/check",
            response_model=IsCanceledResponse,
            responses={400: {"model": ErrorResponse}},
            tags=["Canceled users"],
        )
        async def check_canceled(
            user_id: str | None = Query(default=None),
            username: str | None = Query(default=None),
        ) -> IsCanceledResponse:
            if not user_id and not username:
                raise HTTPException(status_code=400, detail="Either user_id or username is required")
            return await is_canceled_handler(user_id=user_id, username=username, api_deps=_deps())

        @app.delete(
            "/canceled-users/{user_id}",
            response_model=CanceledUserResponse,
            responses={404: {"model": ErrorResponse}},
            tags=["Canceled users"],
        )
        async def delete_canceled_user(user_id: str) -> CanceledUserResponse:
            return await remove_cancellation_handler(user_id=user_id, api_deps=_deps())

        @app.post(
            "/listings",
            response_model=ListingResponse,
            status_code=status.HTTP_201_CREATED,
            responses={422: {"model": ErrorResponse}},
            tags=["Listings"],
        )
        async def create_listing(request: CreateListingRequest) -> ListingResponse:
            return await create_listing_handler(request=request, api_deps=_deps())

        @app.get("/listings", response_model=ListListingsResponse, tags=["Listings"])
        async def list_listings(active: bool | None = Query(default=None)) -> ListListingsResponse:
            return await list_listings_handler(active=active, api_deps=_deps())

    @app.get("/internal/sweeps", response_model=SweepStatusResponse, tags=["System"])
    async def sweep_status() -> SweepStatusResponse:
        return sweep_status_handler(sweeps=sweeps)

    @app.post(
        "/internal/sweeps/{name}/run",
        response_model=SweepRunResponse,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
        tags=["System"],
    )
    async def run_sweep(name: str) -> SweepRunResponse:
        try:
            return await run_sweep_handler(name=name, sweeps=sweeps)
        except SweepNotFoundError as exc:
            raise HTTPException(status_code=404, detail=f"sweep not found: {name}") from exc

    def _mode() -> str:
        if api_deps is None:
            return "empty"
        return type(api_deps.repository).__name__

    return app


def _parse_message_id(raw: str) -> int:
    if not (raw.isascii() and raw.isdigit()) or int(raw) <= 0:
        raise HTTPException(status_code=400, detail="Invalid message ID")
    return int(raw)
