"""
FastAPI Server for the Vault Provisioner.

Provides REST API endpoints for provisioning and confirming vault access,
listing members, running the retention policy, and the Slack slash-command
front-end.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from slack_sdk.signature import SignatureVerifier

from .. import __version__
from ..config import load_settings
from ..engine.scheduler import RetentionScheduler
from ..errors import VaultProvisionerError
from ..models import AuditRecord, MemberStatus, RetentionSummary, UserFacingResult, utcnow
from ..service import ProvisioningService
from ..workflows.helpers import deliver_reply

logger = logging.getLogger(__name__)

SLASH_USAGE = "Usage: `/vault invite <email>` or `/vault confirm <email>`"


# Pydantic models for API requests/responses
class AccessRequest(BaseModel):
    """Provision or confirm request."""
    email: str = Field(..., description="Personal email of the member")
    operator: str = Field("api", description="Who requested the change, for the audit trail")


class MemberResponse(BaseModel):
    """Vault member response."""
    id: str
    email: str
    name: Optional[str]
    status: str
    type: str
    two_factor_enabled: bool
    collections_count: int


class GrantResponse(BaseModel):
    """Collection grant response."""
    collection_id: str
    name: str
    read_only: bool
    hide_passwords: bool
    manage: bool


class PolicyResponse(BaseModel):
    """Resolved collection policy for a role."""
    role: str
    collections: List[GrantResponse]


# Global components (initialized on startup)
service: Optional[ProvisioningService] = None
scheduler: Optional[RetentionScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global service, scheduler

    logger.info("Initializing Vault Provisioner API server components")

    if service is None:
        settings = load_settings(os.environ.get("VAULT_PROVISIONER_CONFIG"))
        missing = settings.missing_required()
        if missing:
            raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")
        service = ProvisioningService(settings)

    if service.settings.scheduler.enabled and scheduler is None:
        scheduler = service.build_scheduler()
        scheduler.start()

    logger.info("Vault Provisioner API server components initialized")

    yield

    logger.info("Shutting down Vault Provisioner API server")
    if scheduler:
        scheduler.stop()
        scheduler = None


# Create FastAPI app
app = FastAPI(
    title="Vault Provisioner API",
    description="Vault membership provisioning - invite, confirm and retention for organization members",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service() -> ProvisioningService:
    if service is None:
        raise HTTPException(status_code=503, detail="Provisioning service not available")
    return service


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Vault Provisioner API", "version": __version__, "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy" if service is not None else "degraded",
        "timestamp": utcnow().isoformat(),
        "mock_mode": service.settings.mock_mode if service else None,
        "components": {
            "service": service is not None,
            "scheduler": scheduler is not None and scheduler.scheduler.running,
            "vault_config": service is not None and service.connector.validate_config(),
        },
    }


@app.post("/access/provision", response_model=UserFacingResult)
def provision_access(request: AccessRequest):
    """Invite a member to the vault, or resend their pending invitation."""
    return get_service().provision_access(request.email, operator=request.operator)


@app.post("/access/confirm", response_model=UserFacingResult)
def confirm_access(request: AccessRequest):
    """Confirm a member who has accepted their invitation."""
    return get_service().confirm_access(request.email, operator=request.operator)


@app.get("/members", response_model=List[MemberResponse])
def list_members(
    status: Optional[str] = Query(None, description="Filter by status (invited, accepted, confirmed, revoked)"),
    limit: int = Query(500, description="Maximum number of results")
):
    """List vault organization members."""
    status_filter = None
    if status:
        try:
            status_filter = MemberStatus[status.upper()]
        except KeyError as e:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}") from e

    try:
        members = get_service().list_members(status_filter)
    except VaultProvisionerError as e:
        logger.error(f"Error listing members: {e}")
        raise HTTPException(status_code=502, detail="Vault API unavailable") from e

    return [
        MemberResponse(
            id=m.organization_member_id,
            email=m.email,
            name=m.name,
            status=m.status.label,
            type=m.type.name.lower(),
            two_factor_enabled=m.two_factor_enabled,
            collections_count=len(m.collections),
        )
        for m in members[:limit]
    ]


@app.post("/retention/run", response_model=RetentionSummary)
def run_retention(dry_run: bool = Query(True, description="Classify only, delete nothing")):
    """Run the retention policy now."""
    summary = get_service().run_retention(dry_run=dry_run)
    if summary.skipped:
        raise HTTPException(status_code=409, detail="Retention run already in progress")
    return summary


@app.get("/policy/{role}", response_model=PolicyResponse)
async def get_policy(role: str):
    """Resolve the collections a role would receive."""
    grants = get_service().policy_mapper.resolve_grants(role)
    return PolicyResponse(
        role=role,
        collections=[GrantResponse(**grant.model_dump()) for grant in grants],
    )


@app.get("/audit", response_model=List[AuditRecord])
def get_audit_logs(
    email: Optional[str] = Query(None, description="Filter by member email"),
    operator: Optional[str] = Query(None, description="Filter by operator"),
    limit: int = Query(100, description="Maximum number of results")
):
    """Get audit records, most recent first."""
    return get_service().audit_logger.get_events(user_email=email, operator=operator, limit=limit)


@app.get("/scheduler")
async def scheduler_status():
    """Scheduler state and next run times."""
    if scheduler is None:
        return {"running": False, "jobs": []}
    return scheduler.status()


@app.post("/slack/commands")
async def slack_command(request: Request, background_tasks: BackgroundTasks):
    """
    Slack slash-command endpoint.

    Acknowledges immediately and completes the operation in the background,
    replying through the command's response URL.
    """
    svc = get_service()
    body = await request.body()

    signing_secret = svc.settings.slack.signing_secret
    if signing_secret:
        verifier = SignatureVerifier(signing_secret)
        if not verifier.is_valid_request(body, dict(request.headers)):
            logger.warning("Rejected Slack command with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid Slack signature")
    else:
        logger.warning("SLACK_SIGNING_SECRET not set, accepting unsigned Slack command")

    form = await request.form()
    text = str(form.get("text", "")).strip()
    operator = str(form.get("user_name") or form.get("user_id") or "slack")
    response_url = str(form.get("response_url", ""))

    parts = text.split()
    if len(parts) != 2 or parts[0].lower() not in ("invite", "confirm"):
        return {"response_type": "ephemeral", "text": SLASH_USAGE}

    action, email = parts[0].lower(), parts[1]
    background_tasks.add_task(process_slash_command, svc, action, email, operator, response_url)

    return {"response_type": "ephemeral", "text": f"Working on `{action}` for {email}..."}


def process_slash_command(svc: ProvisioningService, action: str, email: str,
                          operator: str, response_url: str) -> Dict[str, Any]:
    """Run a slash command and deliver the reply; never raises."""
    if action == "invite":
        result = svc.provision_access(email, operator=operator)
    else:
        result = svc.confirm_access(email, operator=operator)

    delivered = False
    if response_url:
        delivered = deliver_reply(lambda r: svc.notifier.respond(response_url, r), result)
    else:
        logger.warning(f"No response URL for {action} {email}, reply dropped")

    logger.info(f"Slash command {action} for {email} by {operator}: {result.title} (delivered={delivered})")
    return {"result": result.model_dump(), "delivered": delivered}


def start_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "vault_provisioner.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server()
