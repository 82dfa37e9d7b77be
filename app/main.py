"""ASGI entry point for the account moderation API."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router
from app.config import load_settings
from app.database import Base, engine
from app.logging_utils import configure_logging, get_logger
from app.services.notifier import shutdown_notifier
# Registers the account and log tables on Base.metadata
from app.models import audit, domain  # noqa: F401

configure_logging()
settings = load_settings()
logger = get_logger(__name__)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let queued notifications finish before the process exits.
    shutdown_notifier()


app = FastAPI(
    title="Account Moderation Service",
    description=(
        "Administrative account lifecycle: approval, rejection, suspension, "
        "deletion and restore, with an append-only audit trail."
    ),
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api", tags=["Moderation"])


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Account Moderation"}


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Account Moderation Service on port 8000")
    uvicorn.run(app, host="0.0.0.0", port=8000)
