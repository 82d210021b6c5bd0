"""
consent-anchor - FastAPI Application
Two-party consent agreements with ledger-anchored activation
"""

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import logging
import structlog

from pydantic import BaseModel

from .config import get_config
from .constants import SERVICE_NAME, SERVICE_VERSION
from .consent.admin import ConsentAdministrator
from .consent.engine import ConsentLifecycleEngine
from .consent.manager import ConsentManager
from .consent.storage import ConsentStore
from .crypto.jwt import JWTError, extract_bearer_token, verify_access_token
from .exceptions import (
    AuthenticationError,
    ConsentAnchorError,
    ForbiddenError,
    InternalError,
    InvalidOperationError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from .identity.directory import UserDirectory
from .ledger.gateway import HashChainLedgerGateway
from .policy.audit import AuditEventType, AuditLogger
from .policy.rbac import Permission, RBACManager
from .utils.validators import validate_user_id

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Global settings
settings = get_config()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

# Services, wired in lifespan unless already injected
consent_manager: Optional[ConsentManager] = None
consent_administrator: Optional[ConsentAdministrator] = None
user_directory: Optional[UserDirectory] = None
rbac_manager: Optional[RBACManager] = None
audit_logger: Optional[AuditLogger] = None

ERROR_STATUS = {
    ValidationError: 400,
    InvalidOperationError: 400,
    AuthenticationError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    InternalError: 500,
    LedgerError: 502,
}


def build_services(database_url: Optional[str] = None) -> None:
    """Construct the store, ledger, directory and engine and publish them"""
    global consent_manager, consent_administrator, user_directory, rbac_manager, audit_logger

    database_url = database_url or settings.database_url
    audit_logger = AuditLogger() if settings.audit_enabled else None

    user_directory = UserDirectory(database_url)
    rbac_manager = RBACManager()
    store = ConsentStore(database_url)
    engine = ConsentLifecycleEngine(
        store=store,
        ledger=HashChainLedgerGateway(settings.ledger_namespace),
        identities=user_directory,
        audit_logger=audit_logger,
    )
    consent_manager = ConsentManager(engine, user_directory)
    consent_administrator = ConsentAdministrator(store, rbac_manager, audit_logger)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting consent-anchor", version=SERVICE_VERSION)

    if settings.jwt_secret == "change-me":
        logger.warning("jwt_secret is not set, using development fallback")

    if consent_manager is None:
        build_services()
        logger.info("Consent services initialized", database_url=settings.database_url)

    yield

    logger.info("Shutting down consent-anchor")

# Create FastAPI app
app = FastAPI(
    title="consent-anchor",
    description="Two-party consent agreements anchored on a tamper-evident ledger",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConsentAnchorError)
async def consent_error_handler(request: Request, exc: ConsentAnchorError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.error_code,
                    message=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


class Actor(BaseModel):
    user_id: str
    role: str


class RegisterUserRequest(BaseModel):
    email: str
    wallet_address: str
    user_id: Optional[str] = None


class UserOut(BaseModel):
    id: str
    email: str
    wallet_address: str


async def get_current_actor(authorization: Optional[str] = Header(default=None)) -> Actor:
    """Resolve the acting user from the bearer token"""
    try:
        token = extract_bearer_token(authorization)
        claims = verify_access_token(token, settings.jwt_secret)
        user_id = validate_user_id(claims["user_id"])
    except (JWTError, ValidationError) as exc:
        logger.warning("Authentication failed", error=str(exc))
        raise AuthenticationError(str(exc))
    return Actor(user_id=user_id, role=claims["role"])


def _require_manager() -> ConsentManager:
    if not consent_manager:
        raise HTTPException(status_code=503, detail="Consent manager not available")
    return consent_manager


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {
            "consent_manager": consent_manager is not None,
            "consent_administrator": consent_administrator is not None,
            "user_directory": user_directory is not None,
            "audit_logger": audit_logger is not None,
        },
    }


@app.get("/consents")
async def list_consents(actor: Actor = Depends(get_current_actor)) -> List[Dict[str, Any]]:
    """List the caller's agreements, newest first"""
    return await _require_manager().list_consents(actor.user_id)


@app.get("/consents/{consent_id}")
async def get_consent(consent_id: str, actor: Actor = Depends(get_current_actor)):
    """Get one agreement the caller participates in"""
    return await _require_manager().get_consent(actor.user_id, consent_id)


@app.post("/consents/create", status_code=201)
async def create_consent(consent_data: Dict[str, Any], actor: Actor = Depends(get_current_actor)):
    """Create an agreement, paired directly or via a pairing code"""
    result = await _require_manager().create_consent(actor.user_id, consent_data)
    logger.info("Consent created", user_id=actor.user_id, consent_id=result["id"])
    return result


@app.post("/consents/join")
async def join_consent(join_data: Dict[str, Any], actor: Actor = Depends(get_current_actor)):
    """Claim the partner slot with a pairing code"""
    return await _require_manager().join_consent(actor.user_id, join_data)


@app.post("/consents/confirm")
async def confirm_consent(action_data: Dict[str, Any], actor: Actor = Depends(get_current_actor)):
    """Confirm an agreement; activates it once both parties have confirmed"""
    return await _require_manager().confirm_consent(actor.user_id, action_data)


@app.post("/consents/revoke")
async def revoke_consent(action_data: Dict[str, Any], actor: Actor = Depends(get_current_actor)):
    """Revoke an agreement"""
    return await _require_manager().revoke_consent(actor.user_id, action_data)


@app.post("/admin/users", status_code=201, response_model=UserOut)
async def register_user(request: RegisterUserRequest, actor: Actor = Depends(get_current_actor)):
    """Add a participant to the directory (admin only)"""
    if not user_directory or not rbac_manager:
        raise HTTPException(status_code=503, detail="User directory not available")
    if not rbac_manager.check_permission(actor.user_id, Permission.MANAGE_USERS, [actor.role]):
        raise ForbiddenError("Administrative permission required", actor_id=actor.user_id)

    user = user_directory.register_user(request.email, request.wallet_address, request.user_id)
    return UserOut(id=user.id, email=user.email, wallet_address=user.wallet_address)


@app.delete("/admin/consents/{consent_id}", status_code=204)
async def delete_consent(consent_id: str, actor: Actor = Depends(get_current_actor)):
    """Delete an agreement outside the lifecycle (admin only)"""
    if not consent_administrator:
        raise HTTPException(status_code=503, detail="Consent administration not available")
    consent_administrator.delete_agreement(actor.user_id, consent_id, [actor.role])


@app.get("/admin/audit")
async def list_audit_events(
    consent_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    event_type: Optional[AuditEventType] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    actor: Actor = Depends(get_current_actor),
):
    """Query the audit trail (requires view_audit_logs)"""
    if not audit_logger or not rbac_manager:
        raise HTTPException(status_code=503, detail="Audit logging not available")
    if not rbac_manager.check_permission(actor.user_id, Permission.VIEW_AUDIT_LOGS, [actor.role]):
        raise ForbiddenError("Audit access requires view_audit_logs", actor_id=actor.user_id)

    events = audit_logger.get_events(actor_id=actor_id, consent_id=consent_id,
                                     event_type=event_type, limit=limit)
    return {
        "events": [event.model_dump(mode="json") for event in events],
        "integrity_verified": audit_logger.verify_integrity(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
