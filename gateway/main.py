from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid

import uvicorn

from gateway.api.http_app import build_app
from gateway.logging_setup import configure_logging
from gateway.roles import SUPPORTED_ROLES, RuntimeRole, validate_role
from gateway.services.bootstrap import RuntimeContainer, build_runtime_container

logger = logging.getLogger("runtime")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Message gateway: queue API and background sweeps")
    parser.add_argument("--role", required=True, help=f"One of: {', '.join(SUPPORTED_ROLES)}")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None, help="Defaults to 8000 for api, 8100 for sweeper")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    parser.add_argument("--dry-run-startup", action="store_true", help="Build the runtime, log its shape and exit")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (dev only)")
    return parser.parse_args(argv)


def _app_for(container: RuntimeContainer, *, run_id: str) -> object:
    return build_app(
        role=container.role.name,
        run_id=run_id,
        api_deps=container.api_deps,
        serve_queue=container.role.serves_queue,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def _describe(container: RuntimeContainer, *, run_id: str) -> dict[str, object]:
    settings = container.settings
    return {
        "role": container.role.name,
        "service": container.role.name,
        "run_id": run_id,
        "backend": type(container.repository).__name__,
        "sweeps": sorted(name for name, task in container.sweeps.items() if task.enabled),
        "expiry_minutes": settings.expiry_minutes if settings.expiry_enabled else None,
        "lease_timeout_minutes": settings.lease_timeout_minutes,
        "spam_window_minutes": settings.spam_window_minutes,
        "claim_hard_cap": settings.claim_hard_cap,
    }


def create_runtime_app() -> object:
    """uvicorn factory used by ``--reload``; the role comes from ``APP_ROLE``."""
    role = validate_role(os.getenv("APP_ROLE", "api"))
    configure_logging()
    return _app_for(build_runtime_container(role), run_id=str(uuid.uuid4()))


def _serve(role: RuntimeRole, container: RuntimeContainer, *, args: argparse.Namespace, run_id: str) -> None:
    port = args.port if args.port is not None else role.default_port
    if not args.reload:
        uvicorn.run(_app_for(container, run_id=run_id), host=args.host, port=port, log_level="warning")
        return

    # The reloader re-imports the app in a child process, so pass the role through env.
    os.environ["APP_ROLE"] = role.name
    uvicorn.run(
        "gateway.main:create_runtime_app",
        host=args.host,
        port=port,
        log_level="warning",
        reload=True,
        factory=True,
    )


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        role = validate_role(args.role)
    except ValueError as exc:
        sys.stderr.write(f"ERROR: {exc}\n")
        sys.stderr.write(f"Try one of: {', '.join(SUPPORTED_ROLES)}\n")
        return 2

    configure_logging(args.log_level)
    run_id = str(uuid.uuid4())
    container = build_runtime_container(role)
    logger.info("runtime initialized", extra=_describe(container, run_id=run_id))

    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra={"role": role.name, "run_id": run_id})
        return 0

    _serve(role, container, args=args, run_id=run_id)
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
