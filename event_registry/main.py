import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from event_registry.core.clock import utcnow
from event_registry.core.config import LOG_LEVEL, get_cors_origins
from event_registry.database.db import Base, engine
from event_registry.routes import events, registrations, reports
from event_registry.services.errors import InternalError, RegistryError

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables (in production, use migrations such as Alembic)
    Base.metadata.create_all(bind=engine)
    logger.info("Event registry started")
    yield


app = FastAPI(title="Event Registry", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.get("/health", tags=["system"])
def health():
    return {"status": "ok", "timestamp": utcnow().isoformat()}


# Include the routers
app.include_router(events.router)
app.include_router(registrations.router)
app.include_router(reports.router)
