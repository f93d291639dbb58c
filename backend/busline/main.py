import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that read env vars

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from busline.errors import StoreUnavailable
from busline.timetable_store import load_timetable_data

logger = logging.getLogger("busline")
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

# Global state populated during startup
app_state: dict = {}


def reload_timetable(state: dict, path: Optional[str] = None) -> dict:
    """Build a fresh timetable snapshot and swap it into `state`.

    Queries already running keep the snapshot they started with. On failure
    the previous snapshot stays in place and StoreUnavailable propagates.
    """
    timetable = load_timetable_data(path)
    state["timetable"] = timetable
    logger.info(f"Timetable snapshot swapped in from {timetable['source']}")
    return timetable


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the timetable snapshot on startup."""
    logger.info("Loading timetable data...")
    try:
        reload_timetable(app_state)
    except StoreUnavailable as e:
        logger.error(f"Timetable data not available: {e}")
        app_state["timetable"] = None

    yield

    logger.info("Shutting down...")
    app_state.pop("timetable", None)


app = FastAPI(title="Busline API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from busline.routes import router  # noqa: E402

app.include_router(router, prefix="/api")
