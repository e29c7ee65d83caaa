"""
FastAPI application factory with health monitoring.
"""

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from printfleet.api.dependencies import init_dependencies
from printfleet.api.routes import router
from printfleet.health import HealthMonitor
from printfleet.printers.errors import (
    AddressError,
    BatchRequestError,
    ConnectionFault,
    ErrorCode,
    JobFault,
    PrintFault,
    ProtocolFault,
    RegistryFault,
)
from printfleet.service import PrintService

logger = logging.getLogger(__name__)


def status_code_for(fault: PrintFault) -> int:
    """HTTP status for a fault raised out of the service."""
    if isinstance(fault, RegistryFault):
        return 404
    if isinstance(fault, (ProtocolFault, AddressError, BatchRequestError)):
        return 400
    if isinstance(fault, JobFault):
        if fault.code == ErrorCode.JOB_NOT_FOUND:
            return 404
        if fault.code == ErrorCode.INVALID_STATUS:
            return 409
        return 500
    if isinstance(fault, ConnectionFault):
        if fault.code == ErrorCode.NOT_SUPPORTED:
            return 409
        return 503
    return 500


def create_app(
    service: PrintService,
    cors_origins: list[str] = None,
    debug: bool = False,
    health_check_interval_sec: float = 30.0,
    warm_up_on_start: bool = True,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        service: Configured print service
        cors_origins: List of allowed CORS origins (None = allow all)
        debug: Enable debug mode
        health_check_interval_sec: How often to probe printers (default 30s)
        warm_up_on_start: Open printer connections in the background on startup

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="printfleet",
        description="REST API for multi-printer thermal printing",
        version="1.0.0",
        debug=debug
    )

    # CORS configuration
    if cors_origins is None:
        # Development: allow all origins
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    health_monitor = HealthMonitor(
        registry=service.registry,
        connections=service.connections,
        default_interval_sec=health_check_interval_sec
    )

    init_dependencies(service, health_monitor)

    @app.exception_handler(PrintFault)
    async def print_fault_handler(request: Request, exc: PrintFault):
        status = status_code_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    # Include routes
    app.include_router(router)

    warm_up_tasks: list[asyncio.Task] = []

    @app.on_event("startup")
    async def startup():
        logger.info("printfleet starting...")
        for printer in service.list_printers():
            logger.info(f"  {printer.name} ({printer.id}): {printer.connection_type.value} {printer.address.formatted}")

        routes = service.router.list_routes()
        if routes:
            logger.info("Configured roles:")
            for role, info in routes.items():
                logger.info(f"  {role} -> {info['printer_ids']}")

        if warm_up_on_start:
            warm_up_tasks.append(asyncio.create_task(service.warm_up_connections()))

        await health_monitor.start()

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("printfleet shutting down...")
        for task in warm_up_tasks:
            if not task.done():
                task.cancel()
        await health_monitor.stop()
        await service.close()

    return app
