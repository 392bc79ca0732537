"""
FastAPI health and status API for the host controller.

Endpoints:
- GET /healthz                        liveness, 503 once a background task died
- GET /readyz                         readiness, 503 until the first resync is done
- GET /api/hosts                      state summary of every host
- GET /api/hosts/{namespace}/{name}   full spec and status of one host

The controller itself runs as startup task of the app.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import AppConfig
from .models import Host
from .services import HostController

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================

class HealthInfo(BaseModel):
    """Controller health"""
    status: str
    ready: bool
    workers: int
    queue_depth: int
    in_progress: int
    endpoints: int
    reconciles: int
    errors: int
    last_resync: Optional[datetime] = None


class HostSummary(BaseModel):
    """One line of the host list"""
    namespace: str
    name: str
    state: str
    operational_status: str
    error_type: Optional[str] = None
    error_message: str = ""
    powered_on: Optional[bool] = None
    hardware_source: str = ""
    last_updated: Optional[datetime] = None


class HostList(BaseModel):
    hosts: List[HostSummary]
    summary: Dict[str, int]


class HostDetail(BaseModel):
    """Full resource view of one host"""
    namespace: str
    name: str
    annotations: Dict[str, str]
    finalizers: List[str]
    deleting: bool
    spec: Dict[str, Any]
    status: Dict[str, Any]


def summarize_host(host: Host) -> HostSummary:
    status = host.status
    return HostSummary(
        namespace=host.namespace,
        name=host.name,
        state=status.state.value or "new",
        operational_status=status.operational_status.value,
        error_type=status.error_type.value if status.error_type else None,
        error_message=status.error_message,
        powered_on=status.powered_on,
        hardware_source=status.hardware.source.value,
        last_updated=status.last_updated,
    )


# ============================================================================
# App factory
# ============================================================================

def create_app(controller: HostController, start_controller: bool = True) -> FastAPI:
    """
    Build the API around a controller.

    Args:
        controller: Controller whose hosts and health are exposed
        start_controller: Run the controller with the app (startup/shutdown events)

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title=AppConfig.APP_NAME,
        description=AppConfig.APP_DESCRIPTION,
        version=AppConfig.APP_VERSION
    )

    if start_controller:
        @app.on_event("startup")
        async def startup_event():
            """Start the reconciliation loop on app startup"""
            logger.info("Application starting up...")
            await controller.start()
            logger.info("Startup complete")

        @app.on_event("shutdown")
        async def shutdown_event():
            await controller.stop()

    def health_info(status: str) -> HealthInfo:
        queue = controller.queue
        return HealthInfo(
            status=status,
            ready=controller.ready,
            workers=controller.workers,
            queue_depth=queue.depth if queue else 0,
            in_progress=queue.in_progress if queue else 0,
            endpoints=len(controller.endpoints),
            reconciles=controller.reconcile_count,
            errors=controller.error_count,
            last_resync=controller.last_resync,
        )

    @app.get("/healthz", response_model=HealthInfo)
    async def healthz():
        if not controller.healthy:
            return JSONResponse(status_code=503, content=health_info("unhealthy").model_dump(mode="json"))
        return health_info("ok")

    @app.get("/readyz", response_model=HealthInfo)
    async def readyz():
        if not controller.ready:
            return JSONResponse(status_code=503, content=health_info("not ready").model_dump(mode="json"))
        return health_info("ok")

    @app.get(f"{AppConfig.API_PREFIX}/hosts", response_model=HostList)
    async def list_hosts():
        """State summary of every host, sorted by namespace and name"""
        try:
            hosts = await asyncio.to_thread(controller.repository.list)
        except Exception as e:
            logger.error(f"Error listing hosts: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Error listing hosts: {str(e)}")

        summaries = [summarize_host(host) for host in sorted(hosts, key=lambda h: h.key)]
        summary: Dict[str, int] = {"total": len(summaries)}
        for item in summaries:
            summary[item.state] = summary.get(item.state, 0) + 1
        return HostList(hosts=summaries, summary=summary)

    @app.get(f"{AppConfig.API_PREFIX}/hosts/{{namespace}}/{{name}}", response_model=HostDetail)
    async def get_host(namespace: str, name: str):
        host = await asyncio.to_thread(controller.repository.get, namespace, name)
        if host is None:
            raise HTTPException(status_code=404, detail=f"Host {namespace}/{name} not found")
        resource = host.to_resource()
        return HostDetail(
            namespace=host.namespace,
            name=host.name,
            annotations=host.annotations,
            finalizers=host.finalizers,
            deleting=host.deleting,
            spec=resource["spec"],
            status=resource["status"],
        )

    return app
