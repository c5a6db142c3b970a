from __future__ import annotations

import asyncio
import queue

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from hotreload import db
from hotreload.api_models import DependenciesRequest, HealthReport, RestartRequest
from hotreload.broadcaster import message
from hotreload.docker_ops import validate_service_name
from hotreload.service import HotReloadService
from hotreload.settings import settings

VERSION = "1.0.0"

app = FastAPI(title="Config Hot Reload", version=VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_methods=["GET", "POST", "PUT"],
    allow_credentials=True,
)

db.init_db()
service = HotReloadService()


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    service.start()
    db.log_event("INFO", f"Hot reload service started, watching {', '.join(service.watcher.watched_paths())}")


@app.on_event("shutdown")
def shutdown() -> None:
    service.stop()
    db.log_event("INFO", "Hot reload service stopped")


@app.get("/health")
def health() -> dict:
    return {"status": "healthy", "timestamp": db.utc_now(), "version": VERSION}


@app.get("/api/status")
def get_status() -> dict:
    return service.aggregator.snapshot().to_dict()


@app.post("/api/health-report")
def post_health(req: HealthReport) -> dict:
    service.report_health(req.services)
    return service.aggregator.snapshot().to_dict()


@app.get("/api/watched-paths")
def watched_paths() -> dict:
    return {"paths": service.watcher.watched_paths()}


@app.get("/api/clients")
def clients() -> dict:
    return {"connectedClients": service.broadcaster.client_count()}


@app.post("/api/restart/{name}")
def restart(name: str, req: RestartRequest | None = None) -> dict:
    force = req.force if req is not None else False
    try:
        validate_service_name(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if name not in service.graph and not settings.allow_unknown_services:
        raise HTTPException(status_code=404, detail=f"Unknown service '{name}'")
    try:
        results = service.manual_restart(name, force=force)
    except Exception as e:
        db.log_event("ERROR", f"Manual restart failed: {type(e).__name__}: {e}", service_name=name)
        raise HTTPException(status_code=500, detail=f"{type(e).__name__}: {e}")
    return {"success": all(r.success for r in results), "results": [r.to_dict() for r in results]}


@app.get("/api/dependencies")
def get_dependencies() -> dict:
    return {"dependencies": service.graph.snapshot()}


@app.put("/api/dependencies")
def put_dependencies(req: DependenciesRequest) -> dict:
    for name in [*req.dependencies, *(d for deps in req.dependencies.values() for d in deps)]:
        try:
            validate_service_name(name)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"{name}: {e}")
    service.graph.replace(req.dependencies)
    db.log_event("INFO", "Service dependencies updated")
    return {"dependencies": service.graph.snapshot()}


@app.get("/api/events")
def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
    return db.latest_events(limit)


@app.get("/api/changes")
def changes(limit: int = Query(20, ge=1, le=500)) -> list[dict]:
    return db.latest_changes(limit)


def _next_message(q: queue.Queue, timeout_s: float = 0.5) -> dict | None:
    try:
        return q.get(timeout=timeout_s)
    except queue.Empty:
        return None


@app.websocket("/ws/config-status")
async def ws_config_status(ws: WebSocket) -> None:
    await ws.accept()
    b = service.broadcaster
    q = b.register()

    async def pump() -> None:
        while True:
            msg = await asyncio.to_thread(_next_message, q)
            if msg is not None:
                await ws.send_json(msg)

    async def listen() -> None:
        while True:
            text = (await ws.receive_text()).strip()
            if text == "ping":
                await ws.send_json(message("pong", {}))
            elif text == "get_status":
                await ws.send_json(b.status_message())
            elif text == "get_services":
                await ws.send_json(b.services_message())

    try:
        await ws.send_json(b.status_message())
        tasks = [asyncio.create_task(pump()), asyncio.create_task(listen())]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in pending:
            t.cancel()
        for t in done:
            exc = t.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    except WebSocketDisconnect:
        pass
    finally:
        b.unregister(q)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
