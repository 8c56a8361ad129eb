# src/app.py
from fastapi import FastAPI, Depends
import sys
import os
import uvicorn
from fastapi.middleware.cors import CORSMiddleware

current_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.append(current_dir)

from contextlib import asynccontextmanager
from common.logger import configure_logging, logger
from common.config.settings import PulseSettings
from core.services.pulse_service import PulseService
from core.use_cases.pulse.pulse_tokens import PulseTokensQuery
from presentation.api.routes import pulse
from presentation.api.routes.pulse import get_pulse_query
from presentation.api.schemas.pulse import HealthResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    logger.info("Starting application...")
    service = getattr(app.state, "pulse_service", None)
    if service is None:
        service = PulseService(PulseSettings.from_env())
        app.state.pulse_service = service
    if not service.settings.moralis_api_key:
        logger.warning("MORALIS_API_KEY is not set, Moralis backfill requests will likely be rejected")

    await service.start()

    yield  # Everything after this happens at shutdown
    await service.shutdown()
    logger.info("Shutting down application...")

app = FastAPI(
    title="Pulse-Backend",
    version="0.1.0",
    lifespan=lifespan
)

# Mobile app talks to us directly
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"]
)

app.include_router(pulse.router, prefix="/api")


@app.get("/health", response_model=HealthResponse)
async def health_check(query: PulseTokensQuery = Depends(get_pulse_query)):
    return query.health()


if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host="0.0.0.0",  # Critical for external access
        port=PulseSettings.from_env().port,
        reload=False
    )
