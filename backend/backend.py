import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)

# Load .env from the script's directory before the module reads its settings
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

try:
    from backend.tuition_module import functions_router, init_tuition_module, router as tuition_router
    from backend.tuition_module.config import settings
    from backend.tuition_module.database import engine
except ImportError:
    from tuition_module import functions_router, init_tuition_module, router as tuition_router
    from tuition_module.config import settings
    from tuition_module.database import engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        logger.info("Initializing tuition module...")
        init_tuition_module()
        logger.info("Tuition module initialized.")
    except Exception as e:
        logger.error(f"Startup tuition module error: {e}")
        raise
    yield
    logger.info("Shutting down...")


app = FastAPI(title="Tuition Center Tracker API", lifespan=lifespan)

# --- CORS Configuration ---
origins = list(settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    # Browsers reject credentialed responses with a wildcard origin.
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error responses ---
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(status_code=400, content={"success": False, "error": "; ".join(messages)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


app.include_router(functions_router)
app.include_router(tuition_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint to verify backend is running and the database is reachable"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        db_status = "error"

    return {
        "status": "healthy",
        "message": "Tuition Center Tracker backend is running",
        "database": db_status,
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    # Set BACKEND_RELOAD=true explicitly if hot reload is needed.
    reload_enabled = os.getenv("BACKEND_RELOAD", "false").lower() == "true"
    backend_host = os.getenv("BACKEND_HOST", "127.0.0.1")
    backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    try:
        if reload_enabled:
            uvicorn.run("backend:app", host=backend_host, port=backend_port, reload=True)
        else:
            uvicorn.run(app, host=backend_host, port=backend_port)
    except OSError as e:
        if "address already in use" in str(e).lower():
            logger.error(f"Port {backend_port} is already in use. Stop the old process or set BACKEND_PORT to another port.")
        raise
