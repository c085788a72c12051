# livescribe/api/server.py
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional, Set

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from pydantic import BaseModel

from ..app_types import ControllerState
from ..audio.visualizer import FrameBuffer, RenderSurface
from ..config import SUPPORTED_LANGUAGES, load_settings
from ..controller import SessionController, build_controller
from ..ui.output import EXPORT_FILENAME

# ── load .env from the project root ───────────────────────────────────────────
ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT / ".env", override=False)

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[RenderSurface], SessionController]


class LanguageReq(BaseModel):
    language: str


def _default_factory(surface: RenderSurface) -> SessionController:
    return build_controller(load_settings(), surface)


def create_app(controller_factory: Optional[ControllerFactory] = None) -> FastAPI:
    factory = controller_factory or _default_factory
    subs: Set[WebSocket] = set()

    async def _broadcast(msg: dict) -> None:
        payload = json.dumps(msg, ensure_ascii=False)
        dead = []
        for s in list(subs):
            try:
                await s.send_text(payload)
            except Exception:
                dead.append(s)
        for s in dead:
            subs.discard(s)

    loop_ref: dict = {}
    sends: Set[asyncio.Task] = set()

    def _on_state(state: ControllerState) -> None:
        loop = loop_ref.get("loop")
        if not subs or loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not loop:
            # state changed outside the app loop; hop onto it first
            loop.call_soon_threadsafe(_on_state, state)
            return
        task = loop.create_task(_broadcast({"type": "state", **state.model_dump()}))
        sends.add(task)
        task.add_done_callback(sends.discard)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop_ref["loop"] = asyncio.get_running_loop()
        settings = load_settings()
        surface = FrameBuffer(settings.canvas_width, settings.canvas_height)
        controller = factory(surface)
        controller.subscribe(_on_state)
        app.state.controller = controller
        app.state.surface = surface
        try:
            yield
        finally:
            await controller.aclose()

    app = FastAPI(title="livescribe", lifespan=lifespan)

    def _controller(request: Request) -> SessionController:
        return request.app.state.controller

    # ── HTTP API ──────────────────────────────────────────────────────────────
    @app.get("/status")
    async def status(request: Request):
        return {**_controller(request).state.model_dump(), "subscribers": len(subs)}

    @app.get("/languages")
    async def languages():
        return SUPPORTED_LANGUAGES

    @app.get("/devices")
    async def devices():
        try:
            from ..audio.capture import list_input_devices
        except OSError as exc:
            raise HTTPException(status_code=503, detail=f"Audio capture unavailable: {exc}")
        return list_input_devices()

    @app.post("/start")
    async def start(request: Request):
        controller = _controller(request)
        controller.start()
        return {"ok": True, "state": controller.state.model_dump()}

    @app.post("/stop")
    async def stop(request: Request):
        controller = _controller(request)
        controller.stop()
        return {"ok": True, "state": controller.state.model_dump()}

    @app.post("/clear")
    async def clear(request: Request):
        controller = _controller(request)
        controller.clear()
        return {"ok": True, "state": controller.state.model_dump()}

    @app.post("/language")
    async def language(req: LanguageReq, request: Request):
        tag = req.language.strip()
        if not tag:
            raise HTTPException(status_code=422, detail="language must not be empty")
        controller = _controller(request)
        controller.set_language(tag)
        return {"ok": True, "state": controller.state.model_dump()}

    @app.get("/transcript")
    async def transcript(request: Request):
        body = _controller(request).transcript.finalized.encode("utf-8")
        return Response(
            content=body,
            media_type="text/plain; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
        )

    @app.get("/waveform")
    async def waveform(request: Request):
        surface: FrameBuffer = request.app.state.surface
        return {"width": surface.width, "height": surface.height, "points": surface.points}

    # ── WebSocket ────────────────────────────────────────────────────────────
    @app.websocket("/ws/transcript")
    async def ws_transcript(ws: WebSocket):
        await ws.accept()
        subs.add(ws)
        try:
            state = ws.app.state.controller.state
            await ws.send_text(json.dumps({"type": "state", **state.model_dump()}, ensure_ascii=False))
            while True:
                try:
                    await asyncio.wait_for(ws.receive_text(), timeout=60)
                except asyncio.TimeoutError:
                    await ws.send_text(json.dumps({"type": "ping"}))
        except WebSocketDisconnect:
            pass
        finally:
            subs.discard(ws)

    return app


app = create_app()
