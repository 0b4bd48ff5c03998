"""Main FastAPI application module.

This module initializes the FastAPI application and registers all route handlers.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.dependencies import get_gradebook_session
from core.logging_config import setup_logging
from config import (
    APP_VERSION,
    CORS_ALLOWED_ORIGINS,
    API_HOST,
    API_PORT,
)
from api.routes import export, sync
from schemas.gradebook import now_iso

# Setup logging
setup_logging()

# Initialize FastAPI application
app = FastAPI(
    title="GradeJournal API",
    description="Sync and export service for the GradeJournal gradebook.",
    version=APP_VERSION,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route handlers
app.include_router(sync.router)
app.include_router(export.router)


@app.on_event("startup")
async def startup_tasks() -> None:
    """Load the gradebook session (and start auto-sync for remote users)."""
    await get_gradebook_session().load()


@app.on_event("shutdown")
async def shutdown_tasks() -> None:
    """Flush pending saves before the process exits."""
    await get_gradebook_session().close()


@app.get("/", summary="API root", tags=["Info"])
def root() -> dict:
    """API root, returns API information and documentation links.

    Returns:
        Dictionary with API information and documentation links.
    """
    return {
        "name": "GradeJournal API",
        "version": APP_VERSION,
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
        },
        "health": "/api/health",
    }


@app.get("/api/health", summary="Health check", tags=["Health"])
def health() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with status, version and current timestamp.
    """
    return {"status": "ok", "version": APP_VERSION, "timestamp": now_iso()}


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    server_url = f"http://{API_HOST}:{API_PORT}"
    print(f"GradeJournal API: {server_url}")
    print(f"API docs: {server_url}/docs")
    uvicorn.run("app:app", host=API_HOST, port=API_PORT, reload=True)
