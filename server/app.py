"""
FastAPI server for the Pitch Room voice simulator.

Endpoints:
- GET /health: Health check
- GET /metrics: JSON metrics
- POST /api/chat: One investor turn ({userMessage, history} -> {agentText, confidence, decision})
- POST /api/tts: Streamed speech audio for {text}
- POST /api/scorecard: Structured evaluation of {transcript}
- GET/POST /api/flags: Provider selection overrides
- WS /ws: Live browser pitch session
"""

import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
import structlog
import uvicorn

from src.pitchroom.config import get_config, init_config, ConfigError
from src.pitchroom.tts_providers.elevenlabs import ElevenLabsTTSMetrics


# Initialize structured logging
def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


logger = structlog.get_logger(__name__)

CHAT_FALLBACK_TEXT = "Hold on... give me a sec."


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_connections: int = 0
    active_connections: int = 0
    total_sessions: int = 0
    chat_requests: int = 0
    tts_requests: int = 0
    scorecard_requests: int = 0
    errors: int = 0
    tts_synthesis: ElevenLabsTTSMetrics = field(default_factory=ElevenLabsTTSMetrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "total_sessions": self.total_sessions,
            "chat_requests": self.chat_requests,
            "tts_requests": self.tts_requests,
            "scorecard_requests": self.scorecard_requests,
            "errors": self.errors,
            "tts_synthesis": self.tts_synthesis.to_dict(),
        }


# Global metrics
metrics = ServerMetrics()


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    userMessage: str = Field(..., min_length=1)
    history: List[HistoryMessage] = Field(default_factory=list)


class TTSRequest(BaseModel):
    text: str = ""


class TranscriptLine(BaseModel):
    speaker: str
    text: str
    isInterim: bool = False


class ScorecardRequest(BaseModel):
    transcript: List[TranscriptLine] = Field(default_factory=list)


class FlagsUpdate(BaseModel):
    ff_stt_provider: Optional[str] = None
    ff_tts_provider: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Pitch Room server...")

    try:
        # Initialize and validate configuration
        config = init_config()
        configure_logging(config.log_level)

        # Validate Groq model at startup
        if config.validate_llm_model:
            from src.pitchroom.llm import initialize_llm
            await initialize_llm(config)

        logger.info("Server ready", port=config.port)

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except SystemExit:
        raise
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")


# Create FastAPI app
app = FastAPI(
    title="Pitch Room",
    description="Voice pitch simulator with an AI investor",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_connections": metrics.active_connections,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


@app.post("/api/chat")
async def chat(body: ChatRequest) -> JSONResponse:
    """One investor turn. Failures answer 500 with a neutral in-character line."""
    from src.pitchroom.investor import InvestorAgent

    metrics.chat_requests += 1
    config = get_config()
    history = [m.model_dump() for m in body.history]

    try:
        agent = InvestorAgent(config=config, thresholds=config.thresholds)
        reply = await agent.reply(body.userMessage, history)
    except Exception as e:
        logger.error("Chat request failed", error=str(e))
        metrics.errors += 1
        return JSONResponse(
            status_code=500,
            content={
                "agentText": CHAT_FALLBACK_TEXT,
                "confidence": 50,
                "decision": "LISTENING",
                "error": "Failed to process request",
            },
        )

    return JSONResponse(
        content={
            "agentText": reply.text,
            "confidence": reply.confidence,
            "decision": reply.decision.value,
        }
    )


@app.post("/api/tts")
async def tts(body: TTSRequest):
    """
    Stream synthesized speech.

    The first chunk is pulled before the response starts so an upstream
    failure can still be reported as a 502 JSON body.
    """
    from src.pitchroom.speech_text import prepare_for_speech
    from src.pitchroom.tts_providers.base import TTSProviderError
    from src.pitchroom.tts_providers.elevenlabs import ElevenLabsTTS

    metrics.tts_requests += 1
    text = prepare_for_speech(body.text)
    if not text:
        return JSONResponse(status_code=400, content={"error": "No text provided"})

    provider = ElevenLabsTTS(get_config(), metrics=metrics.tts_synthesis)
    chunks = provider.synthesize_streaming(text)

    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        first = None
    except TTSProviderError as e:
        logger.error("TTS request failed", error=str(e), status_code=e.status_code)
        metrics.errors += 1
        await chunks.aclose()
        return JSONResponse(status_code=502, content={"error": "TTS synthesis failed"})

    async def body_stream():
        try:
            if first is not None and first.audio_bytes:
                yield first.audio_bytes
            async for chunk in chunks:
                if chunk.audio_bytes:
                    yield chunk.audio_bytes
        except TTSProviderError as e:
            logger.error("TTS stream broke", error=str(e))
        finally:
            await chunks.aclose()

    return StreamingResponse(
        body_stream(),
        media_type=provider.content_type,
        headers={"Cache-Control": "no-cache"},
    )


@app.post("/api/scorecard")
async def scorecard(body: ScorecardRequest) -> JSONResponse:
    """Evaluate a transcript. Unparseable evaluator output answers 400 with the raw text."""
    from src.pitchroom.scorecard import ScorecardParseError, ScorecardRequestor

    metrics.scorecard_requests += 1
    entries = [line.model_dump() for line in body.transcript]

    try:
        result = await ScorecardRequestor(config=get_config()).generate(entries)
    except ScorecardParseError as e:
        logger.error("Failed to parse scorecard", raw=e.raw[:200])
        metrics.errors += 1
        return JSONResponse(
            status_code=400,
            content={"error": "Failed to parse scorecard", "raw": e.raw},
        )
    except Exception as e:
        logger.error("Scorecard request failed", error=str(e))
        metrics.errors += 1
        return JSONResponse(status_code=500, content={"error": "Failed to generate scorecard"})

    return JSONResponse(content=result.to_dict())


@app.get("/api/flags")
async def get_flags() -> JSONResponse:
    """Effective provider selection plus any persisted overrides."""
    from src.pitchroom.flags import get_capture_provider, get_render_provider, read_flags

    config = get_config()
    return JSONResponse(
        content={
            "overrides": read_flags(config),
            "stt_provider": get_capture_provider(config),
            "tts_provider": get_render_provider(config),
        }
    )


@app.post("/api/flags")
async def update_flags(body: FlagsUpdate) -> JSONResponse:
    """Set overrides; an empty string clears one. Applies from the next session."""
    from src.pitchroom.flags import STT_FLAG, TTS_FLAG, set_provider_override

    config = get_config()
    updates = body.model_dump(exclude_unset=True)
    try:
        for key in (STT_FLAG, TTS_FLAG):
            if key in updates:
                set_provider_override(key, updates[key] or None, config)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    return await get_flags()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Live pitch session WebSocket endpoint.

    One connection drives one session: mic frames and recognition results
    come in, state snapshots and speech audio go out.
    """
    await websocket.accept()

    metrics.total_connections += 1
    metrics.active_connections += 1
    metrics.total_sessions += 1

    session_id = f"room_{int(time.time() * 1000)}"
    logger.info(
        "WebSocket connected",
        session_id=session_id,
        active_connections=metrics.active_connections,
    )

    # Import here to avoid circular imports and speed up startup
    from src.pitchroom.room import create_room

    room = None

    async def send_message(message: str) -> None:
        """Send a message to the WebSocket."""
        try:
            await websocket.send_text(message)
        except Exception as e:
            logger.error("Failed to send WebSocket message", error=str(e))

    try:
        room = await create_room(send_message, tts_metrics=metrics.tts_synthesis)

        while True:
            try:
                message = await websocket.receive_text()
                await room.handle_message(message)

            except WebSocketDisconnect:
                logger.info("WebSocket disconnected", session_id=session_id)
                break
            except Exception as e:
                logger.error(
                    "Error handling WebSocket message",
                    session_id=session_id,
                    error=str(e),
                )
                metrics.errors += 1
                # Continue processing - don't crash on single message error
                continue

    except Exception as e:
        logger.error(
            "WebSocket handler error",
            session_id=session_id,
            error=str(e),
        )
        metrics.errors += 1

    finally:
        if room:
            try:
                await room.stop()
            except Exception as e:
                logger.error("Error stopping room", error=str(e))

        metrics.active_connections -= 1

        logger.info(
            "Session closed",
            session_id=session_id,
            active_connections=metrics.active_connections,
        )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
