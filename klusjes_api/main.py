"""FastAPI application for the Klusjes chore tracker backend."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from klusjes_api.database import create_db_and_tables, get_session
from klusjes_api.errors import install_error_handlers, storage_errors
from klusjes_api.routes.feed import router as feed_router
from klusjes_api.routes.photos import router as photos_router
from klusjes_api.routes.rooms import router as rooms_router
from klusjes_api.routes.tasks import router as tasks_router
from klusjes_api.seed import seed_sample_data
from klusjes_api.uploads import UPLOAD_DIR, UPLOAD_URL_PREFIX

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup via SQLModel create_all."""
    create_db_and_tables()
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    yield


app = FastAPI(title="Klusjes API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Cache-Control"],
)

install_error_handlers(app)

app.include_router(rooms_router)
app.include_router(tasks_router)
app.include_router(photos_router)
app.include_router(feed_router)
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "klusjes-api"}


@app.post("/api/init-data")
def init_data(session: Session = Depends(get_session)):
    """Reset the store to the sample household."""
    with storage_errors(session, "Failed to initialize sample data"):
        counts = seed_sample_data(session)
    return {"status": "success", "message": "Sample data initialized", **counts}


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "klusjes_api.main:app",
        host=os.getenv("KLUSJES_HOST", "0.0.0.0"),
        port=int(os.getenv("KLUSJES_PORT", "8000")),
    )
