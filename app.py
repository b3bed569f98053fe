from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend import RoomRegistry
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from dispatcher import RelayDispatcher
from logging_config import get_logger, setup_logging
from routers.signaling import signaling_router

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Signaling relay")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(signaling_router)

    # Room state is per process and lost on restart
    registry = RoomRegistry()
    app.state.registry = registry
    app.state.dispatcher = RelayDispatcher(registry)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
