"""
Inspection API

Read-only FastAPI surface over a running controller: scheme table,
constraint sequence, audit log and stats. Nothing here can mutate state;
privileged operations go through the Controller methods only.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from .audit import AuditEventType
from .core.controller import Controller
from .core.permissions import permission_names

logger = logging.getLogger(__name__)


# Response models
class HealthResponse(BaseModel):
    status: str
    controller: str
    retired: bool
    upgrade_target: Optional[str] = None


class SchemeResponse(BaseModel):
    principal: str
    registered: bool
    permissions: int
    permission_names: List[str]
    config_hash: str


def create_app(controller: Controller) -> FastAPI:
    """
    Build the inspection app for a controller.

    The controller's own audit log backs /audit.
    """
    app = FastAPI(title="Scheme Controller", version="0.1.0")

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            controller=controller.address,
            retired=controller.is_retired,
            upgrade_target=controller.upgrade_target,
        )

    @app.get("/schemes")
    async def list_schemes() -> Dict[str, Any]:
        return controller.permissions.to_dict()

    @app.get("/schemes/{principal}", response_model=SchemeResponse)
    async def get_scheme(principal: str) -> SchemeResponse:
        # An unknown principal is simply unregistered, not an error
        mask = controller.get_scheme_permissions(principal)
        return SchemeResponse(
            principal=principal,
            registered=mask != 0,
            permissions=mask,
            permission_names=permission_names(mask),
            config_hash="0x" + controller.get_scheme_config(principal).hex(),
        )

    @app.get("/constraints")
    async def list_constraints() -> Dict[str, Any]:
        return {
            **controller.constraints.to_dict(),
            "live": controller.global_constraints_count(),
        }

    @app.get("/audit")
    async def audit(
        limit: Optional[int] = Query(default=None, ge=0),
        event_type: Optional[str] = None,
        caller: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        etype = None
        if event_type:
            try:
                etype = AuditEventType(event_type)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")
        events = controller.audit_log.events(event_type=etype, caller=caller, limit=limit)
        return [e.model_dump(mode="json") for e in events]

    @app.get("/state")
    async def state() -> Dict[str, Any]:
        return controller.to_dict()

    @app.get("/stats")
    async def stats() -> Dict[str, Any]:
        return controller.get_stats()

    logger.info(f"Inspection API created for {controller.address}")
    return app
