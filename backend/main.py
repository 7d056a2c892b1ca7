from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from sqlalchemy import inspect, text
from pydantic import BaseModel
from datetime import datetime
import logging, os, uvicorn

# Import our modules
from app.core.database import get_db, engine, Base, SessionLocal
from app.core.errors import ConflictError, NotFoundError, ConfigurationError
from app.core.security import create_access_token, ACCESS_TTL_MIN
from app.crud.workflow import seed_definitions
from app.deps.auth import ROLES, require_role
from app.metrics import init_metrics_zero
from app.services import notify
from app.utils.runtime_config import set_notify_webhook, get_notify_webhook
from app.api.approvals import router as approvals_router
from app.api.workflows import router as workflows_router
from app.api.corrections import router as corrections_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("hr_approvals")

SEED_WORKFLOWS = os.getenv("SEED_WORKFLOWS", "1") == "1"

logger.info("database: %s (%s)", engine.url.render_as_string(hide_password=True), engine.name)

# FastAPI app
app = FastAPI(
    title="HR Approvals API",
    description="Multi-step approval workflows for HR requests",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

app.include_router(approvals_router)
app.include_router(workflows_router)
app.include_router(corrections_router)


@app.on_event("startup")
def on_startup():
    logger.info("creating tables on startup")
    Base.metadata.create_all(bind=engine)
    logger.info("tables now: %s", inspect(engine).get_table_names())
    if SEED_WORKFLOWS:
        db = SessionLocal()
        try:
            seed_definitions(db)
        finally:
            db.close()
    init_metrics_zero()

@app.on_event("shutdown")
def on_shutdown():
    notify.shutdown(wait=False)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})

@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.warning("configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "tables": inspect(engine).get_table_names(),
            "timestamp": datetime.now()
        }
    except Exception as e:
        logger.error("health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now()
        }

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class LoginIn(BaseModel):
    username: str
    role: str

# Development login; in production the identity provider mints these tokens.
@app.post("/auth/login")
def auth_login(body: LoginIn):
    role = body.role.lower()
    if role not in ROLES:
        raise HTTPException(400, f"role must be one of {'|'.join(ROLES)}")
    access = create_access_token(body.username, role)
    return {"access_token": access, "token_type": "bearer", "expires_in": ACCESS_TTL_MIN * 60,
            "role": role, "username": body.username}


class WebhookIn(BaseModel):
    webhook_url: str

@app.post("/config/notify-webhook", response_model=dict)
def api_set_notify_webhook(body: WebhookIn, user=Depends(require_role("admin"))):
    url = body.webhook_url.strip()
    if url and not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="Invalid webhook URL")
    set_notify_webhook(url)
    logger.info("notification webhook %s by %s", "set" if url else "cleared", user.user_id)
    return {"saved": True}

@app.get("/config/notify-webhook", response_model=dict)
def api_get_notify_webhook(user=Depends(require_role("admin"))):
    val = get_notify_webhook()
    masked = (val[:20] + "…") if val else None
    return {"configured": bool(val), "webhook_url_preview": masked}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
