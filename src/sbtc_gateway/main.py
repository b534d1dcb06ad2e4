"""aiohttp application entrypoint."""
from __future__ import annotations

from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from sbtc_gateway.api.middleware import create_trace_middleware, error_middleware
from sbtc_gateway.api.router import setup_routes
from sbtc_gateway.chain.explorer import BlockExplorer
from sbtc_gateway.db.migrations import create_migration_runner
from sbtc_gateway.db.pool import close_pool, init_pool
from sbtc_gateway.logging_config import configure_logging
from sbtc_gateway.otel import setup_otel, shutdown_otel
from sbtc_gateway.repositories import REPOSITORIES_KEY, Repositories, init_repositories
from sbtc_gateway.services.dependencies import EXPLORER_KEY, close_services, init_services
from sbtc_gateway.settings import settings
from sbtc_gateway.webhooks_dispatcher import (
    DISPATCH_SIGNAL_KEY,
    DispatchSignal,
    start_webhook_dispatcher,
    stop_webhook_dispatcher,
)
from sbtc_gateway.workers import start_background_worker, stop_background_worker


async def healthcheck(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


def create_app(
    *,
    repositories: Repositories | None = None,
    explorer: BlockExplorer | None = None,
    background: bool = True,
) -> web.Application:
    """Build the application.

    ``repositories`` and ``explorer`` replace the database-backed and Hiro
    implementations; with injected repositories no pool or migrations are set
    up. ``background=False`` skips the dispatcher and maintenance worker.
    """
    app = web.Application(
        middlewares=[create_trace_middleware(settings.app_name), error_middleware]
    )
    app[DISPATCH_SIGNAL_KEY] = DispatchSignal()
    if repositories is not None:
        app[REPOSITORIES_KEY] = repositories
    if explorer is not None:
        app[EXPLORER_KEY] = explorer

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers="*",
                allow_headers="*",
                allow_methods="*",
            )
            for origin in settings.cors_allowed_origins
        },
    )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)

    if repositories is None:
        app.on_startup.append(init_pool)
        app.on_startup.append(create_migration_runner())
    app.on_startup.append(init_repositories)
    app.on_startup.append(init_services)
    if background:
        app.on_startup.append(start_webhook_dispatcher)
        app.on_cleanup.append(stop_webhook_dispatcher)
        if repositories is None:
            app.on_startup.append(start_background_worker)
            app.on_cleanup.append(stop_background_worker)
    app.on_cleanup.append(close_services)
    if repositories is None:
        app.on_cleanup.append(close_pool)
    app.on_cleanup.append(shutdown_otel)

    setup_otel(
        app,
        endpoint=str(settings.otel_exporter_endpoint) if settings.otel_exporter_endpoint else None,
        service_name=settings.app_name,
    )

    for route in list(app.router.routes()):
        cors.add(route)

    return app


def main() -> None:
    configure_logging(settings.log_level, settings.log_format)
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
