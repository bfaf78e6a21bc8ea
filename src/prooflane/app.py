import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Sequence

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from .attest.submitter import AttestationSubmitter, RetryPolicy
from .config import LEDGER_EMULATOR, PipelineConfig, load_config
from .crypto.keys import ensure_attestor_key, public_key_b64
from .ledger.emulator import build_ledger_router
from .ledger.endpoint import LedgerEndpoint
from .ledger.http import endpoints_from_config
from .ledger.memory import InMemoryLedger
from .obs.prom import prometheus_latest
from .utils.logging import get_logger
from .verify.capabilities import capabilities_from_config
from .verify.dispatcher import VerifierDispatcher
from .workflow.events import EventChannel, to_sse
from .workflow.orchestrator import build_orchestrator
from .workflow.session import Session
from .workflow.sources import CandidateSource, DirectoryCandidateSource
from .workflow.store import SessionStore, run_expiry_loop, store_from_config

log = get_logger()


def create_app(
    cfg: Optional[PipelineConfig] = None,
    *,
    store: Optional[SessionStore] = None,
    endpoints: Optional[Sequence[LedgerEndpoint]] = None,
    dispatcher: Optional[VerifierDispatcher] = None,
    source: Optional[CandidateSource] = None,
    ledger_emulator: bool = LEDGER_EMULATOR,
    expiry_interval: float = 60.0,
) -> FastAPI:
    cfg = cfg or load_config()
    store = store if store is not None else store_from_config(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = asyncio.Event()
        task = asyncio.create_task(run_expiry_loop(store, expiry_interval, stop))
        try:
            yield
        finally:
            stop.set()
            await task
            for ep in endpoints:
                aclose = getattr(ep, "aclose", None)
                if aclose is not None:
                    await aclose()
            dispatcher.close()

    app = FastAPI(title="prooflane proof attestation pipeline", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if endpoints is None:
        endpoints = []
        if cfg.ledger_endpoints or ledger_emulator:
            key = ensure_attestor_key(cfg.attestor_signing_key)
            endpoints = endpoints_from_config(cfg, key)
            if ledger_emulator:
                ledger = InMemoryLedger(attestor=public_key_b64(key))
                app.include_router(build_ledger_router(ledger))
                app.state.ledger = ledger
                if not endpoints:
                    # no external ledger configured: attest straight into the emulator
                    endpoints = [ledger.endpoint("emulator")]
                log.info("ledger emulator mounted at /ledger")
    dispatcher = dispatcher or VerifierDispatcher(capabilities_from_config(cfg), call_timeout=cfg.verify_call_timeout)
    source = source or DirectoryCandidateSource(cfg.candidate_dir)
    app.state.cfg = cfg
    app.state.store = store

    @app.get("/__health")
    async def health():
        return {"status": "ok"}

    @app.get("/workflow")
    async def workflow(kind: str = "all"):
        try:
            session = Session(kind=kind)
        except ValidationError:
            return JSONResponse({"error": f"unknown kind {kind!r}"}, status_code=400)
        if not endpoints:
            return JSONResponse({"error": "no ledger endpoints configured"}, status_code=503)
        channel = EventChannel(cfg.event_channel_size)
        submitter = AttestationSubmitter(endpoints, RetryPolicy.from_config(cfg))
        orch = build_orchestrator(cfg, session, source, dispatcher, submitter, store, channel=channel)
        log.info("workflow session %s started (kind=%s)", session.session_id, session.kind)

        async def _stream():
            task = asyncio.create_task(orch.run())
            try:
                async for event in channel:
                    yield to_sse(event)
                await task
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            _stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
                "X-Session-Id": session.session_id,
            },
        )

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        s = store.get(session_id)
        if s is None:
            raise HTTPException(status_code=404, detail="session not found")
        return JSONResponse(s.model_dump(mode="json"))

    @app.get("/metrics")
    def prometheus_metrics():
        body, content_type = prometheus_latest()
        return Response(body, media_type=content_type)

    return app
