import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.activities import router as activities_router
from app.api.v1.attachments import router as attachments_router
from app.api.v1.audit_logs import router as audit_logs_router
from app.api.v1.auth import router as auth_router
from app.api.v1.dashboard import router as dashboard_router
from app.api.v1.doctor import router as doctor_router
from app.api.v1.events import router as events_router
from app.api.v1.projects import router as projects_router
from app.api.v1.subprojects import router as subprojects_router
from app.api.v1.users import router as users_router
from app.core.config import settings
from app.db.init_db import seed_initial_data
from app.services.scheduler import start_automation, stop_automation
from app.storage.base import StorageError
from app.storage.provider import get_storage

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("gestor")

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Gestor de Projetos - projetos, subprojetos, atividades e prazos",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    storage = get_storage()
    await seed_initial_data(storage)
    if settings.SCHEDULER_ENABLED:
        start_automation(storage)
    else:
        logger.info("Automacao de prazos desabilitada (SCHEDULER_ENABLED=0)")
    if settings.ENV.lower() == "production":
        if settings.SECRET_KEY == "dev-secret-change-me":
            logger.warning("SECRET_KEY esta usando valor padrao em producao.")
        if settings.ADMIN_PASSWORD == "admin123":
            logger.warning("ADMIN_PASSWORD esta usando valor padrao em producao.")
        if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            logger.warning("SQLALCHEMY_DATABASE_URI aponta para SQLite em producao.")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    stop_automation()


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage error path=%s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Armazenamento indisponivel"},
    )


app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(projects_router, prefix="/api")
app.include_router(subprojects_router, prefix="/api")
app.include_router(activities_router, prefix="/api")
app.include_router(attachments_router, prefix="/api")
app.include_router(events_router, prefix="/api")
app.include_router(audit_logs_router, prefix="/api")
app.include_router(dashboard_router, prefix="/api")
app.include_router(doctor_router, prefix="/api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/api/health")
def health():
    return {"status": "ok"}
