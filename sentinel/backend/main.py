"""
Sentinel — Main FastAPI Application
Intelligence ingestion, reconciliation and enrichment service
"""

import asyncio
import logging
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from agents.llm import Completer, ModelChain, ReasoningClient
from agents.node_generation import NodeGenerationAgent
from agents.prophet import ProphetAgent
from agents.reasoning import ReasoningAgent
from backend.config import Settings, settings as default_settings
from backend.intelligence import IntelligenceService
from backend.models import (
    AnalyzeRequest,
    Category,
    IngestRequest,
    OsintNewsItem,
    ProphetRequest,
    SearchRequest,
)
from backend.scheduler import IngestionScheduler
from backend.websocket_manager import StreamManager
from collectors.serper_collector import SerperCollector
from fusion_engine.store import IntelligenceStore
from fusion_engine.temporal import date_from_slider_position, iso_day, temporal_window

# ─── Logging ───────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(name)-20s │ %(levelname)-7s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("sentinel.main")

SERPER_KEY_MISSING = "SERPER_API_KEY is not configured."
OPENAI_KEY_MISSING = "OPENAI_API_KEY is not configured."


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def news_items(value: Any) -> list[OsintNewsItem]:
    """Validate a client-supplied OSINT list, dropping entries that do not fit."""
    if not isinstance(value, list):
        return []
    items = []
    for entry in value:
        try:
            items.append(OsintNewsItem.model_validate(entry))
        except ValidationError:
            logger.debug("Dropping malformed OSINT entry: %r", entry)
    return items


def parse_categories(value: Optional[str]) -> Optional[set[Category]]:
    if value is None:
        return None
    active = set()
    for name in value.split(","):
        name = name.strip().upper()
        if name in Category.__members__:
            active.add(Category[name])
    return active


def build_service(
    settings: Settings,
    store: IntelligenceStore,
    llm: Completer,
    search_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IntelligenceService:
    """Construct the search gateway and the three agents around one reasoning client."""
    search = SerperCollector(
        settings.serper_api_key,
        timeout=settings.search_timeout,
        transport=search_transport,
    )
    fallback = settings.reasoning_fallback_model
    generic = tuple(settings.fallback_models)
    reasoning_chain = ModelChain(settings.reasoning_model, fallback, generic)

    return IntelligenceService(
        settings=settings,
        store=store,
        search=search,
        node_agent=NodeGenerationAgent(
            llm,
            reasoning_chain,
            live_chain=ModelChain(settings.live_model, fallback, generic),
        ),
        prophet_agent=ProphetAgent(
            llm,
            prefilter_chain=ModelChain(settings.prefilter_model, fallback, generic),
            chain=reasoning_chain,
        ),
        reasoning_agent=ReasoningAgent(llm, reasoning_chain),
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    search_transport: Optional[httpx.AsyncBaseTransport] = None,
    llm: Optional[Completer] = None,
) -> FastAPI:
    settings = settings or default_settings

    store = IntelligenceStore()
    reasoning_client = llm or ReasoningClient(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.reasoning_timeout,
    )
    service = build_service(settings, store, reasoning_client, search_transport)
    stream = StreamManager(store)

    scheduler = IngestionScheduler(
        service,
        store,
        interval=settings.poll_interval,
        on_pulse=stream.publish_pulse,
        on_log=stream.publish_log,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: start the background stream on startup, stop on shutdown."""
        logger.info("═══════════════════════════════════════════════")
        logger.info("  SENTINEL — Intelligence Ingestion Engine     ")
        logger.info("  Version %s", settings.app_version)
        logger.info("═══════════════════════════════════════════════")

        if not service.search_configured:
            logger.warning(SERPER_KEY_MISSING)
        if not service.reasoning_configured:
            logger.warning(OPENAI_KEY_MISSING)

        task = None
        if settings.scheduler_enabled:
            task = asyncio.create_task(scheduler.start())
            logger.info("Started ingestion scheduler")

        yield

        # Shutdown
        logger.info("Shutting down Sentinel...")
        scheduler.stop()
        if task:
            task.cancel()
        await service.search.aclose()
        if isinstance(reasoning_client, ReasoningClient):
            await reasoning_client.aclose()

    # ─── FastAPI App ───────────────────────────────────
    app = FastAPI(
        title="Sentinel",
        description="OSINT intelligence ingestion and reconciliation service",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.service = service
    app.state.scheduler = scheduler
    app.state.stream = stream

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request.")
        return error_response(f"{where}: {message}" if where else message, 400)

    # ─── REST Endpoints ───────────────────────────────
    @app.get("/health")
    async def health():
        return {"ok": True, "ts": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/intel/live")
    async def intel_live():
        """Latest global conflict snapshot; stale or seed data rather than an error."""
        if not service.search_configured:
            return error_response(SERPER_KEY_MISSING, 500)
        if not service.reasoning_configured:
            return error_response(OPENAI_KEY_MISSING, 500)
        try:
            feed = await service.live_feed()
        except Exception as e:
            logger.error("Live ingestion failed: %s", e, exc_info=True)
            return error_response("Live ingestion failed.", 500)
        return feed.to_wire()

    @app.post("/api/intel/search")
    async def intel_search(body: SearchRequest):
        if not body.temporal_date:
            return error_response("temporalDate is required.", 400)
        try:
            result = await service.search_intelligence(body)
        except Exception as e:
            logger.error("Search agent failed: %s", e, exc_info=True)
            return error_response("Search agent failed.", 500)
        return result.to_wire()

    @app.post("/api/intel/analyze")
    async def intel_analyze(body: AnalyzeRequest):
        if not service.reasoning_configured:
            return error_response(OPENAI_KEY_MISSING, 500)
        if body.sitrep is None:
            return error_response("sitrep is required.", 400)
        try:
            analysis = await service.analyze(body.sitrep, news_items(body.raw_osint))
        except Exception as e:
            logger.error("Reasoning agent failed: %s", e, exc_info=True)
            return error_response("Reasoning agent failed.", 500)
        return analysis.to_wire()

    @app.post("/api/intel/prophet")
    async def intel_prophet(body: ProphetRequest):
        if not service.reasoning_configured:
            return error_response(OPENAI_KEY_MISSING, 500)
        if not isinstance(body.osint_batch, list):
            return error_response("osintBatch must be an array.", 400)
        temporal_date = body.temporal_date or iso_day(datetime.now(timezone.utc))
        try:
            nodes = await service.run_prophet(news_items(body.osint_batch), temporal_date)
        except Exception as e:
            logger.error("Prophet agent failed: %s", e, exc_info=True)
            return error_response("Prophet agent failed.", 500)
        return {"prophetNodes": [node.to_wire() for node in nodes]}

    # ─── Store Endpoints ──────────────────────────────
    @app.get("/api/sitreps")
    async def get_sitreps(
        position: Optional[float] = Query(default=None, ge=0, le=100),
        categories: Optional[str] = None,
    ):
        """Display-filtered sitreps for a scrubber position and category set."""
        visible = store.visible_sitreps(parse_categories(categories), position)
        pos = store.temporal_position if position is None else position
        return {
            "count": len(visible),
            "temporalDate": date_from_slider_position(pos).isoformat(),
            "sitreps": [s.to_wire() for s in visible],
        }

    @app.get("/api/sitreps/{sitrep_id}")
    async def get_sitrep(sitrep_id: str):
        sitrep = store.get_sitrep(sitrep_id)
        if sitrep is None:
            return error_response(f"Unknown sitrep: {sitrep_id}", 404)
        return sitrep.to_wire()

    @app.post("/api/sitreps/{sitrep_id}/analysis")
    async def analyze_stored_sitrep(sitrep_id: str):
        """Deep analysis through the store cache; one reasoning call per sitrep id."""
        if not service.reasoning_configured:
            return error_response(OPENAI_KEY_MISSING, 500)
        try:
            analysis = await service.analyze_sitrep(sitrep_id)
        except Exception as e:
            logger.error("Reasoning agent failed: %s", e, exc_info=True)
            return error_response("Reasoning agent failed.", 500)
        if analysis is None:
            return error_response(f"Unknown sitrep: {sitrep_id}", 404)
        return analysis.to_wire()

    @app.get("/api/prophet")
    async def get_prophet_nodes():
        """Latest forecast batch (audit snapshot, replaced on every run)."""
        return {
            "count": len(store.prophet_nodes),
            "prophetNodes": [node.to_wire() for node in store.prophet_nodes],
        }

    @app.get("/api/status")
    async def get_status():
        return {
            **store.status(),
            "searchConfigured": service.search_configured,
            "reasoningConfigured": service.reasoning_configured,
            "wsClients": stream.client_count,
        }

    @app.post("/api/ingest")
    async def ingest(body: Optional[IngestRequest] = None):
        """Run one ingestion cycle now, outside the periodic schedule."""
        if not service.search_configured:
            return error_response(SERPER_KEY_MISSING, 500)
        if not service.reasoning_configured:
            return error_response(OPENAI_KEY_MISSING, 500)
        if scheduler.is_cycle_running:
            return error_response("An ingestion cycle is already running.", 409)

        report = await scheduler.tick(body.query if body else None)
        if report is None:
            return error_response("Ingestion cycle failed.", 502)
        return {
            "message": report.message,
            "newSitreps": [s.to_wire() for s in report.new_sitreps],
            "forecasts": [s.to_wire() for s in report.forecasts],
            "rawCount": report.raw_count,
            "latencyMs": report.latency_ms,
        }

    @app.get("/api/temporal")
    async def get_temporal(position: float = Query(default=100.0, ge=0, le=100)):
        return {
            "position": position,
            "date": date_from_slider_position(position).isoformat(),
            **temporal_window(position),
        }

    # ─── WebSocket Endpoint ───────────────────────────
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for the live intelligence stream."""
        await stream.subscribe(websocket)

        try:
            while True:
                data = await websocket.receive_text()
                logger.debug("Client message: %s", data)
        except WebSocketDisconnect:
            stream.unsubscribe(websocket)

    return app


app = create_app()


# ─── Run ───────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=True,
    )
