import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from convo.config import settings
from convo.errors import StorageFailure

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Path(settings.conversations_dir).mkdir(parents=True, exist_ok=True)
    logger.info("ready, storing conversations under %s", settings.conversations_dir)
    yield


app = FastAPI(
    title="AI Conversation System",
    description="two LLM agents talking to each other, with speech and shareable replays",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageFailure)
async def storage_failure_handler(request: Request, exc: StorageFailure):
    logger.error("storage failure on %s: %s", request.url.path, exc)
    return JSONResponse({"success": False, "message": str(exc)}, status_code=500)


from convo.routers import conversation, keys, proxy, security, share  # noqa: E402

app.include_router(security.router, prefix="/api", tags=["security"])
app.include_router(keys.router, prefix="/api", tags=["keys"])
app.include_router(proxy.router, prefix="/api/proxy", tags=["proxy"])
app.include_router(share.router, tags=["share"])
app.include_router(conversation.router, tags=["conversation"])


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "openrouter_configured": bool(settings.openrouter_api_key),
        "groq_configured": bool(settings.groq_api_key),
    }
