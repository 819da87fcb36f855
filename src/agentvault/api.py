"""
agentvault API — Dashboard backend for agents, credentials and ledger stats.

  GET    /api/agents                 ?wallet= | ?id= | all
  POST   /api/agents                 create agent + issue credential (201)
  PATCH  /api/agents/{id}            partial update
  DELETE /api/agents/{id}            cascade delete
  GET    /api/agents/{id}/credentials
  POST   /api/credentials/{id}/verify
  POST   /api/credentials/{id}/revoke
  GET    /api/stats                  database + ledger, cached 10 s
  GET    /api/stats/wallet           ?address=
  GET    /api/activity               ?limit=
  GET    /api/activity/wallet        ?address=&limit=
  GET    /api/midnight/stats
  GET    /api/contract-status
  POST   /api/auth/connect | /api/auth/disconnect
  GET    /api/auth/session
  GET    /health
  GET    /                           HTML dashboard

Errors are always ``{"error": "..."}``.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from agentvault import __version__
from agentvault.config import Settings
from agentvault.credentials import CredentialService
from agentvault.dashboard import render_dashboard
from agentvault.database import Database
from agentvault.errors import AgentVaultError, NotFoundError, UnauthorizedError, ValidationError
from agentvault.ledger import LedgerAdapter, LedgerStats, load_deployment
from agentvault.security import (
    apply_security, limiter, log_auth_failure, logger, sanitize_input, validate_public_key,
)

SESSION_COOKIE = "wallet_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7
STATS_CACHE_SECONDS = 10.0

AGENT_TYPES = ("autonomous", "tool-calling", "human-supervised")
AGENT_STATUSES = ("active", "inactive", "blocked")

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class AccessScope(BaseModel):
    secrets: list[str] = []
    resources: list[str] = []


class AgentCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    agent_type: str = "autonomous"
    public_key: Optional[str] = None
    owner_wallet_address: Optional[str] = None
    capabilities: list[str] = []
    rate_limit_per_hour: int = Field(100, ge=1)
    credential_expiry_days: int = Field(365, ge=1)
    access_scope: Optional[AccessScope] = None
    metadata: dict = {}


class AgentUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    agent_type: Optional[str] = None
    status: Optional[str] = None
    metadata: Optional[dict] = None
    capabilities: Optional[list[str]] = None
    rate_limit_per_hour: Optional[int] = Field(None, ge=1)
    access_scope: Optional[AccessScope] = None


class VerifyRequest(BaseModel):
    agent_secret: str = ""


class WalletConnect(BaseModel):
    walletAddress: Optional[str] = None
    network: Optional[str] = None
    displayName: Optional[str] = None


# ---------------------------------------------------------------------------
# Dependencies (components live on app.state)
# ---------------------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_ledger(request: Request) -> LedgerAdapter:
    return request.app.state.ledger


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def _session_wallet(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE) or None


def _check_choice(value: Optional[str], allowed: tuple[str, ...], field: str) -> None:
    if value is not None and value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")


def _deployment_info(request: Request) -> dict:
    settings: Settings = request.app.state.settings
    ledger: LedgerAdapter = request.app.state.ledger
    deployment = ledger.deployment or load_deployment(settings.deployment_path)
    return {
        "contractAddress": deployment.get("contractAddress"),
        "network": deployment.get("network") or settings.network,
        "deployedAt": deployment.get("deployedAt"),
    }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/health")
async def health(request: Request, db: Database = Depends(get_db),
                 ledger: LedgerAdapter = Depends(get_ledger)):
    return {
        "status": "ok",
        "version": __version__,
        "database": "ok" if await db.ping() else "unavailable",
        "ledger": await ledger.mode(),
    }


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def dashboard():
    return HTMLResponse(render_dashboard())


# ─── Agents ───────────────────────────────────────────────────────

@router.get("/api/agents")
async def list_agents(
    wallet: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    if id:
        agent = await db.get_agent(id)
        if agent is None:
            raise NotFoundError("Agent not found")
        return agent
    return await db.list_agents(wallet_address=wallet or None)


@router.post("/api/agents", status_code=201)
@limiter.limit("20/minute")
async def create_agent(request: Request, body: AgentCreate,
                       service: CredentialService = Depends(get_credentials)):
    if not body.name or not body.name.strip():
        raise ValidationError("Agent name is required")
    owner = body.owner_wallet_address or _session_wallet(request)
    if not owner:
        log_auth_failure(request.client.host if request.client else "", "no wallet session",
                         request.url.path)
        raise UnauthorizedError("Wallet connection required")

    sanitize_input(body.name, "name")
    if body.description:
        sanitize_input(body.description, "description")
    _check_choice(body.agent_type, AGENT_TYPES, "agent_type")
    public_key = validate_public_key(body.public_key) if body.public_key else None

    agent, credential = await service.provision_agent(
        name=body.name.strip(),
        owner_wallet_address=owner,
        description=body.description,
        agent_type=body.agent_type,
        public_key=public_key,
        capabilities=body.capabilities,
        rate_limit_per_hour=body.rate_limit_per_hour,
        credential_expiry_days=body.credential_expiry_days,
        access_scope=body.access_scope.model_dump() if body.access_scope else None,
        metadata=body.metadata,
    )
    return {**agent, "midnight_credential": credential.public_dict()}


@router.patch("/api/agents/{agent_id}")
async def update_agent(agent_id: str, body: AgentUpdate, db: Database = Depends(get_db)):
    fields = body.model_dump(exclude_unset=True)
    if fields.get("name") is not None:
        if not fields["name"].strip():
            raise ValidationError("Agent name cannot be empty")
        fields["name"] = fields["name"].strip()
        sanitize_input(fields["name"], "name")
    if fields.get("description"):
        sanitize_input(fields["description"], "description")
    _check_choice(fields.get("agent_type"), AGENT_TYPES, "agent_type")
    _check_choice(fields.get("status"), AGENT_STATUSES, "status")
    # Explicit nulls leave the column untouched.
    fields = {k: v for k, v in fields.items() if v is not None}

    agent = await db.update_agent(agent_id, fields)
    if agent is None:
        raise NotFoundError("Agent not found")
    return agent


@router.delete("/api/agents/{agent_id}")
async def delete_agent(agent_id: str, db: Database = Depends(get_db)):
    if not await db.delete_agent(agent_id):
        raise NotFoundError("Agent not found")
    logger.info("Agent deleted", extra={"agent_id": agent_id})
    return {"success": True}


@router.get("/api/agents/{agent_id}/credentials")
async def agent_credentials(agent_id: str, db: Database = Depends(get_db)):
    if await db.get_agent(agent_id) is None:
        raise NotFoundError("Agent not found")
    return await db.list_credentials(agent_id)


# ─── Credentials ──────────────────────────────────────────────────

@router.post("/api/credentials/{credential_id}/verify")
@limiter.limit("30/minute")
async def verify_credential(request: Request, credential_id: str, body: VerifyRequest,
                            service: CredentialService = Depends(get_credentials)):
    if not body.agent_secret:
        raise ValidationError("agent_secret is required")
    if await service.db.get_credential(credential_id) is None:
        raise NotFoundError("Credential not found")
    verified = await service.verify_agent_authorization(credential_id, body.agent_secret)
    if not verified:
        log_auth_failure(request.client.host if request.client else "",
                         "credential verification failed", request.url.path)
    return {"credential_id": credential_id, "verified": verified}


@router.post("/api/credentials/{credential_id}/revoke")
@limiter.limit("30/minute")
async def revoke_credential(request: Request, credential_id: str,
                            service: CredentialService = Depends(get_credentials)):
    credential = await service.revoke_agent_credential(credential_id)
    return {"success": True, "credential": credential}


# ─── Stats & activity ─────────────────────────────────────────────

@router.get("/api/stats")
async def stats(request: Request, db: Database = Depends(get_db),
                ledger: LedgerAdapter = Depends(get_ledger)):
    cache = request.app.state.stats_cache
    now = time.monotonic()
    if cache["data"] is not None and now - cache["at"] < STATS_CACHE_SECONDS:
        return cache["data"]

    db_stats = await db.stats()
    ledger_stats = await ledger.get_stats()
    data = {
        **db_stats,
        **_deployment_info(request),
        "ledger": ledger_stats.to_dict(),
        "dataSource": "contract" if ledger_stats.source == "contract" else "database",
    }
    cache["data"], cache["at"] = data, now
    return data


@router.get("/api/stats/wallet")
async def wallet_stats(request: Request, address: Optional[str] = Query(None),
                       db: Database = Depends(get_db)):
    if not address:
        raise ValidationError("Wallet address is required")
    return {**await db.stats(wallet_address=address), **_deployment_info(request)}


def _activity_from_audit(log: dict) -> dict:
    kind = {"success": "auth_success", "blocked": "blocked"}.get(log["result"], "action")
    return {
        "id": log["id"],
        "type": kind,
        "agentName": log.get("agent_name") or "Unknown Agent",
        "action": log["action"],
        "result": log["result"],
        "timestamp": log["created_at"],
        "txHash": log.get("tx_hash"),
        "metadata": log.get("metadata"),
    }


def _activity_from_verification(v: dict) -> dict:
    ok = v["verification_result"]
    return {
        "id": v["id"],
        "type": "verification_success" if ok else "verification_failed",
        "agentName": v.get("agent_name") or "Unknown Agent",
        "action": "ZK Proof Verification",
        "result": "success" if ok else "failed",
        "timestamp": v["verified_at"],
        "txHash": v.get("tx_hash"),
        "metadata": v.get("metadata"),
    }


@router.get("/api/activity")
async def activity(limit: int = Query(10, ge=1, le=200), db: Database = Depends(get_db)):
    items = [_activity_from_audit(a) for a in await db.recent_audit_logs(limit)]
    items += [_activity_from_verification(v) for v in await db.recent_verifications(limit)]
    items.sort(key=lambda x: x["timestamp"], reverse=True)
    return items[:limit]


@router.get("/api/activity/wallet")
async def wallet_activity(address: Optional[str] = Query(None),
                          limit: int = Query(10, ge=1, le=200),
                          db: Database = Depends(get_db)):
    if not address:
        raise ValidationError("Wallet address is required")
    return await db.recent_audit_logs(limit, wallet_address=address)


@router.get("/api/midnight/stats")
async def midnight_stats(ledger: LedgerAdapter = Depends(get_ledger)):
    s: LedgerStats = await ledger.get_stats()
    total = s.successful_auth + s.blocked_attempts
    return {
        "success": True,
        "stats": s.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metrics": {
            "totalAuth": total,
            "successRate": f"{s.successful_auth / total * 100:.1f}" if total else "0.0",
            "capabilityBreakdown": {
                "read": s.total_read_auth,
                "write": s.total_write_auth,
                "execute": s.total_execute_auth,
            },
        },
    }


@router.get("/api/contract-status")
async def contract_status(settings: Settings = Depends(get_settings),
                          ledger: LedgerAdapter = Depends(get_ledger)):
    available = await ledger.is_available()
    return {
        "contractAvailable": available,
        "mode": "contract" if available else "simulated",
        "bridge": settings.bridge_url if ledger.connection is not None else "not configured",
        "fallbackVerify": ledger.fallback_verify,
    }


# ─── Wallet session ───────────────────────────────────────────────

@router.post("/api/auth/connect")
@limiter.limit("30/minute")
async def connect_wallet(request: Request, response: Response, body: WalletConnect,
                         db: Database = Depends(get_db),
                         settings: Settings = Depends(get_settings)):
    if not body.walletAddress or not body.walletAddress.strip():
        raise ValidationError("Wallet address is required")
    address = sanitize_input(body.walletAddress.strip(), "walletAddress")
    if body.displayName:
        sanitize_input(body.displayName, "displayName")
    wallet = await db.upsert_wallet(address, network=body.network or settings.network,
                                    display_name=body.displayName)
    response.set_cookie(
        SESSION_COOKIE, address,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.production,
        path="/",
    )
    return {"success": True, "walletAddress": wallet["wallet_address"],
            "network": wallet["network"]}


@router.post("/api/auth/disconnect")
async def disconnect_wallet(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"success": True}


@router.get("/api/auth/session")
async def session(request: Request, response: Response, db: Database = Depends(get_db)):
    address = _session_wallet(request)
    if not address:
        return {"connected": False}
    wallet = await db.get_wallet(address)
    if wallet is None:
        response.delete_cookie(SESSION_COOKIE, path="/")
        return {"connected": False}
    return {
        "connected": True,
        "walletAddress": wallet["wallet_address"],
        "network": wallet["network"],
        "displayName": wallet["display_name"],
    }


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

async def _agentvault_error(request: Request, exc: AgentVaultError):
    if exc.status >= 500:
        logger.error("Request failed: %s", exc.message, extra={"path": request.url.path})
    return JSONResponse(status_code=exc.status, content={"error": exc.message})


async def _validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def _http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)},
                        headers=getattr(exc, "headers", None))


async def _unhandled_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url.path, type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect what the factory built; leave injected, connected components alone."""
    db: Database = app.state.db
    ledger: LedgerAdapter = app.state.ledger
    opened_db = not db.connected
    if opened_db:
        await db.connect()
    await ledger.initialize()
    logger.info("agentvault API started",
                extra={"database": db.backend, "ledger": await ledger.mode()})
    yield
    await ledger.close()
    if opened_db:
        await db.close()


def create_app(*, settings: Optional[Settings] = None,
               db: Optional[Database] = None,
               ledger: Optional[LedgerAdapter] = None,
               allowed_origins: list[str] | None = None,
               use_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI app. Components are created from settings unless injected."""
    settings = settings or Settings.from_env()
    db = db or Database(settings.database_url)
    ledger = ledger or LedgerAdapter.from_settings(settings)

    app = FastAPI(
        title="agentvault API",
        description="Zero-knowledge credentials for AI agents",
        version=__version__,
        lifespan=lifespan if use_lifespan else None,
        docs_url=None if settings.production else "/docs",
        redoc_url=None if settings.production else "/redoc",
    )
    app.state.settings = settings
    app.state.db = db
    app.state.ledger = ledger
    app.state.credentials = CredentialService(db, ledger)
    app.state.stats_cache = {"at": 0.0, "data": None}

    apply_security(app, allowed_origins)
    app.add_exception_handler(AgentVaultError, _agentvault_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled_error)
    app.include_router(router)
    return app


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings=settings), host="0.0.0.0", port=8000,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
