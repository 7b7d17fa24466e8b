import logging

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from entityforge.config import get_settings
from entityforge.constants import API_PREFIX
from entityforge.database import initialize_database
from entityforge.errors import ConcurrentModification
from entityforge.errors import DefinitionInUse
from entityforge.errors import DuplicateCode
from entityforge.errors import EntityEngineError
from entityforge.errors import NotFound
from entityforge.routers.entities import router as entities_router
from entityforge.routers.entity_records import router as entity_records_router
from entityforge.routers.system import router as system_router

_settings = get_settings()

# --------------------------------------------------------------------------
# LOGGING CONFIGURATION
# --------------------------------------------------------------------------
#
# - Default log level: INFO
# - Can be set at runtime with LOG_LEVEL env (e.g. LOG_LEVEL=WARNING for CI)
#
_log_level = getattr(logging, _settings.log_level.upper(), None)
if not isinstance(_log_level, int):
    _log_level = logging.INFO
logging.basicConfig(level=_log_level, format="%(levelname)s - %(name)s - %(message)s", handlers=[logging.StreamHandler()])

logger = logging.getLogger(__name__)

app = FastAPI(title="Entity Forge API", redirect_slashes=True)

# ------------------------------------------------------------------
# CORS – open wildcard in dev/tests, restricted otherwise unless
# ALLOWED_CORS_ORIGINS (comma-separated) says more.
# ------------------------------------------------------------------

if _settings.auth_disabled:
    cors_origins = ["*"]
else:
    cors_origins = [o.strip() for o in _settings.allowed_cors_origins.split(",") if o.strip()]
    if not cors_origins:
        cors_origins = ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR = (
    (NotFound, 404),
    (DuplicateCode, 409),
    (ConcurrentModification, 409),
    (DefinitionInUse, 409),
)


def status_for(exc: EntityEngineError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


@app.exception_handler(EntityEngineError)
async def entity_engine_error_handler(request: Request, exc: EntityEngineError):
    status_code = status_for(exc)
    if status_code == 409:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status_code, content={"status": "fail", **exc.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"status": "error", "message": "Internal server error"})


app.include_router(entities_router, prefix=API_PREFIX)
app.include_router(entity_records_router, prefix=API_PREFIX)
app.include_router(system_router, prefix=API_PREFIX)


@app.on_event("startup")
async def startup_event():
    """Create DB tables if they don't exist."""
    initialize_database()
    logger.info("Database tables initialized")


@app.get("/")
async def read_root():
    return {"message": "Entity Forge API is running"}
