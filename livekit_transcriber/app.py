"""
Live Transcription Service FastAPI Application

Joins LiveKit rooms as a silent bot, transcribes each participant with
AssemblyAI streaming, and publishes finalized transcripts.

Endpoints:
    GET /health - Health check
    GET /metrics - Prometheus metrics
    GET /rooms - Active rooms
    POST /rooms/{room_id}/start - Start transcribing a room (background)
    POST /rooms/{room_id}/stop - Stop transcribing a room
    POST /webhook/livekit - LiveKit room/participant webhooks
    POST /webhook/rooms - Meeting platform room lifecycle webhooks
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from shared.health_check import check_redis_health
from shared.observability import get_metrics_response, setup_metrics
from shared.redis_client import close_redis_client, get_redis_client

from .assemblyai_engine import AssemblyAIEngine
from .config import TranscriberConfig
from .forwarding import TranscriptForwarder
from .livekit_transport import LiveKitTransport
from .models import LiveKitWebhook, PlatformWebhook
from .room_bot import RoomBot
from .room_registry import RoomSessionRegistry
from .session_store import RedisSessionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "livekit-transcriber"

# Global state
config: TranscriberConfig = None
redis_client = None
registry: RoomSessionRegistry = None
forwarder: TranscriptForwarder = None
engine: AssemblyAIEngine = None
app_start_time: float = time.time()


def build_registry(cfg: TranscriberConfig, store, fwd: TranscriptForwarder, engine: AssemblyAIEngine) -> RoomSessionRegistry:
    """Wire the transport, engine and bot factory into a registry."""
    transport = LiveKitTransport(cfg.livekit_url, cfg.livekit_api_key, cfg.livekit_api_secret, cfg.sample_rate)

    def bot_factory(room_id, on_transcript, on_disconnected) -> RoomBot:
        return RoomBot(room_id, transport, engine, cfg, on_transcript, on_disconnected)

    return RoomSessionRegistry(store, bot_factory, fwd)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for application startup/shutdown"""
    global config, redis_client, registry, forwarder, engine

    logger.info("=" * 70)
    logger.info("🚀 Starting Live Transcription Service")
    logger.info("=" * 70)

    config = TranscriberConfig.from_env()
    config.require_credentials()
    logging.getLogger().setLevel(config.log_level)
    logger.info(
        f"📋 Configuration loaded | LiveKit: {config.livekit_url} | "
        f"Chunk: {config.chunk_size} samples ({config.chunk_duration_ms:.0f}ms) | "
        f"Threshold: {config.speech_threshold}"
    )

    setup_metrics(SERVICE_NAME)

    redis_client = await get_redis_client()
    store = RedisSessionStore(
        redis_client,
        tokens_per_hour=config.tokens_per_hour,
        transcript_retention_s=config.transcript_retention_s,
    )
    forwarder = TranscriptForwarder(config.agent_url, config.signals_url, config.forward_timeout_s)
    engine = AssemblyAIEngine(config.assemblyai_api_key, sample_rate=config.sample_rate, api_host=config.assemblyai_host)
    registry = build_registry(config, store, forwarder, engine)

    logger.info(f"✅ Ready on {config.host}:{config.port}")

    yield

    # Shutdown
    logger.info("=" * 70)
    logger.info("🛑 Shutting down Live Transcription Service...")
    logger.info("=" * 70)

    await registry.stop_all()
    await engine.aclose()
    await forwarder.close()
    await close_redis_client()
    redis_client = None

    logger.info("✅ Live Transcription Service stopped")


# Initialize FastAPI app
app = FastAPI(
    title="Live Transcription Service",
    description="Real-time meeting transcription for LiveKit rooms",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_registry() -> RoomSessionRegistry:
    if registry is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return registry


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service health status
    """
    redis_connected = False
    if redis_client is not None:
        redis_health = await check_redis_health(redis_client)
        redis_connected = redis_health.is_healthy()

    return {
        "status": "healthy" if redis_connected else "degraded",
        "service": SERVICE_NAME,
        "active_rooms": len(registry.active_rooms()) if registry else 0,
        "uptime_seconds": time.time() - app_start_time,
        "redis_connected": redis_connected,
    }


@app.get("/metrics")
async def metrics():
    content, content_type = get_metrics_response()
    return Response(content=content, media_type=content_type)


@app.get("/rooms")
async def list_rooms():
    reg = _require_registry()
    rooms = [reg.room_stats(room_id) for room_id in reg.active_rooms()]
    return {"rooms": [r for r in rooms if r is not None]}


@app.post("/rooms/{room_id}/start")
async def start_room(room_id: str):
    """Start transcription; the join happens in the background."""
    reg = _require_registry()
    reg.spawn(reg.start_room(room_id))
    return {"success": True, "message": f"Starting transcription for room {room_id}", "status": "starting"}


@app.post("/rooms/{room_id}/stop")
async def stop_room(room_id: str):
    reg = _require_registry()
    stopped = await reg.stop_room(room_id)
    message = f"Stopped transcription for room {room_id}" if stopped else f"Room {room_id} was not active"
    return {"success": True, "message": message}


@app.post("/webhook/livekit")
async def livekit_webhook(payload: LiveKitWebhook):
    """
    LiveKit server webhooks.

    room_started starts a bot in the background; room_finished stops it.
    """
    try:
        reg = _require_registry()
        room_name = payload.room.name if payload.room else None
        logger.info(f"📨 LiveKit webhook: {payload.event} room={room_name}")

        if payload.event == "room_started" and room_name:
            reg.spawn(reg.start_room(room_name))
        elif payload.event == "room_finished" and room_name:
            await reg.stop_room(room_name)
        elif payload.event in ("participant_joined", "participant_left"):
            identity = payload.participant.identity if payload.participant else None
            logger.info(f"👤 {payload.event}: {identity} in {room_name}")
        else:
            logger.info(f"Unhandled LiveKit event: {payload.event}")

        return {"received": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ LiveKit webhook error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.post("/webhook/rooms")
async def platform_webhook(payload: PlatformWebhook):
    """Meeting platform room lifecycle webhooks."""
    try:
        reg = _require_registry()
        logger.info(f"📨 Platform webhook: {payload.event} room={payload.room_id}")

        if payload.event in ("room.started", "room.created"):
            reg.spawn(reg.start_room(payload.room_id))
        elif payload.event in ("room.ended", "room.finished"):
            await reg.stop_room(payload.room_id)
        else:
            logger.info(f"Unhandled platform event: {payload.event}")

        return {"received": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Platform webhook error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "livekit_transcriber.app:app",
        host=os.getenv("TRANSCRIBER_HOST", "0.0.0.0"),
        port=int(os.getenv("TRANSCRIBER_PORT", "3002")),
        log_level="info",
        reload=False
    )
