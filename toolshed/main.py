import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import config
from .background import PeriodicTask
from .blob_store import LocalBlobStore
from .gateway import GeminiExtractionGateway
from .store import EntityStore
from .usecases.extraction import ExtractionLog
from .usecases.inventory import InventoryService

from .routers.health import router as health_router
from .routers.tools import router as tools_router
from .routers.loans import router as loans_router
from .routers.incidents import router as incidents_router
from .routers.ai import router as ai_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class _LazyStaticFiles(StaticFiles):
    """Serves the directory the lifespan put on ``app.state``, not one fixed at import."""

    def __init__(self, state_attr: str) -> None:
        super().__init__(directory=None, check_dir=False)
        self._state_attr = state_attr

    async def __call__(self, scope, receive, send):
        directory = getattr(scope["app"].state, self._state_attr)
        if directory != self.directory:
            self.directory = directory
            self.all_directories = self.get_directories(directory, None)
        await super().__call__(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI):
    blobs = LocalBlobStore(config.IMAGES_DIR, config.TEMP_IMAGES_DIR)
    gateway = GeminiExtractionGateway(config.GOOGLE_API_KEY, config.GEMINI_MODEL, config.GEMINI_API_BASE)
    if not gateway.configured:
        logger.warning("[EXTRACT] no API key configured; extraction will return fallback drafts")

    with EntityStore.opened(config.DATA_DIR) as store:
        app.state.store = store
        app.state.blobs = blobs
        app.state.gateway = gateway
        app.state.inventory = InventoryService(store, blobs)
        app.state.extraction_log = ExtractionLog(config.DATA_DIR, config.EXTRACTION_LOG_LIMIT)
        app.state.images_dir = str(blobs.permanent_dir)
        app.state.temp_images_dir = str(blobs.temp_dir)

        tasks = [
            PeriodicTask("autosave", config.AUTOSAVE_INTERVAL_SECONDS, store.flush_if_dirty),
            PeriodicTask(
                "temp-sweep",
                config.TEMP_SWEEP_INTERVAL_SECONDS,
                lambda: blobs.delete_older_than(config.TEMP_MAX_AGE_SECONDS),
            ),
        ]
        for t in tasks:
            t.start()
        try:
            yield
        finally:
            logger.info("[STORE] shutting down, flushing")
            for t in tasks:
                await t.stop()
            await gateway.aclose()


app = FastAPI(title="Toolshed Lending API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.CORS_ORIGIN.split(",") if o.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(health_router)
app.include_router(tools_router, prefix="/api")
app.include_router(loans_router, prefix="/api")
app.include_router(incidents_router, prefix="/api")
app.include_router(ai_router, prefix="/api")

app.mount("/tools", _LazyStaticFiles("images_dir"), name="images")
app.mount("/temp", _LazyStaticFiles("temp_images_dir"), name="temp-images")
