# livescribe/ui/window.py
import asyncio
import logging
from typing import Optional, Sequence, Tuple

# Tk runs on the event loop thread, pumped by TranscriptWindow.run()
try:
    import tkinter as tk
    from tkinter import filedialog
except ImportError:
    tk = None

from ..app_types import ControllerState
from ..config import SUPPORTED_LANGUAGES, Settings
from ..errors import UnsupportedPlatform
from .output import EXPORT_FILENAME

logger = logging.getLogger(__name__)

UI_TICK_SEC = 0.01

BG = "#0f172a"        # slate-900
FG = "#e2e8f0"
INTERIM_FG = "#94a3b8"
WAVE_BG = "#020617"
WAVE_FG = "#10b981"   # emerald-500


class CanvasSurface:
    """Waveform surface backed by a fixed-size tk canvas."""

    def __init__(self, canvas, width: int, height: int, color: str = WAVE_FG):
        self.canvas = canvas
        self.width = width
        self.height = height
        self.color = color

    def clear(self) -> None:
        self.canvas.delete("wave")

    def draw_line(self, points: Sequence[Tuple[float, float]]) -> None:
        if len(points) < 2:
            return
        flat = [c for point in points for c in point]
        self.canvas.create_line(*flat, fill=self.color, width=2, tags="wave")


class TranscriptWindow:
    def __init__(self, settings: Settings):
        if tk is None:
            raise UnsupportedPlatform("tkinter is not available")
        self.settings = settings
        self._controller = None
        self._alive = True

        self.root = tk.Tk()
        self.root.title("Live Speech to Text")
        self.root.protocol("WM_DELETE_WINDOW", self.close)

        frame = tk.Frame(self.root, bg=BG)
        frame.pack(fill="both", expand=True)

        self.text = tk.Text(
            frame, height=10, width=60, wrap="word",
            bg=BG, fg=FG, insertbackground=FG, font=("Helvetica", 14),
            relief="flat", state="disabled",
        )
        self.text.tag_configure("interim", foreground=INTERIM_FG)
        self.text.pack(padx=12, pady=(12, 6), fill="both", expand=True)

        canvas = tk.Canvas(
            frame, width=settings.canvas_width, height=settings.canvas_height,
            bg=WAVE_BG, highlightthickness=0,
        )
        canvas.pack(padx=12, pady=6)
        self.surface = CanvasSurface(canvas, settings.canvas_width, settings.canvas_height)

        controls = tk.Frame(frame, bg=BG)
        controls.pack(padx=12, pady=6, fill="x")
        self.start_btn = tk.Button(controls, text="Start Listening")
        self.stop_btn = tk.Button(controls, text="Stop Listening", state="disabled")
        self.clear_btn = tk.Button(controls, text="Clear")
        self.copy_btn = tk.Button(controls, text="Copy")
        self.export_btn = tk.Button(controls, text="Export")
        for btn in (self.start_btn, self.stop_btn, self.clear_btn, self.copy_btn, self.export_btn):
            btn.pack(side="left", padx=(0, 6))

        languages = list(SUPPORTED_LANGUAGES)
        if settings.language not in languages:
            languages.append(settings.language)
        self.lang_var = tk.StringVar(value=settings.language)
        tk.OptionMenu(controls, self.lang_var, *languages).pack(side="right")

        self.status_var = tk.StringVar(value="")
        tk.Label(
            frame, textvariable=self.status_var, fg=INTERIM_FG, bg=BG,
            font=("Helvetica", 11), anchor="w",
        ).pack(padx=12, pady=(0, 10), fill="x")

    def bind(self, controller) -> None:
        self._controller = controller
        self.start_btn.configure(command=controller.start)
        self.stop_btn.configure(command=controller.stop)
        self.clear_btn.configure(command=controller.clear)
        self.copy_btn.configure(command=self._copy)
        self.export_btn.configure(command=self._export)
        self.lang_var.trace_add("write", lambda *_: controller.set_language(self.lang_var.get()))
        controller.subscribe(self.render)
        self.render(controller.state)

    def render(self, state: ControllerState) -> None:
        if not self._alive:
            return
        self.text.configure(state="normal")
        self.text.delete("1.0", "end")
        self.text.insert("end", state.text)
        self.text.insert("end", state.interim_text, "interim")
        self.text.see("end")
        self.text.configure(state="disabled")

        self.start_btn.configure(state="disabled" if state.is_listening else "normal")
        busy = state.is_listening or state.visualizing
        self.stop_btn.configure(state="normal" if busy else "disabled")

        if state.error:
            self.status_var.set(state.error)
        elif state.is_listening:
            self.status_var.set(f"Listening ({state.language})")
        else:
            self.status_var.set("Idle")

    def _copy(self) -> None:
        if self._controller.copy_transcript():
            self.status_var.set("Transcript copied to clipboard")

    def _export(self) -> None:
        path: Optional[str] = filedialog.asksaveasfilename(
            defaultextension=".txt",
            initialfile=EXPORT_FILENAME,
            initialdir=str(self.settings.export_dir),
            filetypes=[("Text files", "*.txt")],
        )
        if path and self._controller.export_transcript(path) is not None:
            self.status_var.set(f"Saved {path}")

    async def run(self) -> None:
        while self._alive:
            try:
                self.root.update()
            except tk.TclError:
                break
            await asyncio.sleep(UI_TICK_SEC)

    def close(self) -> None:
        if not self._alive:
            return
        self._alive = False
        try:
            self.root.destroy()
        except tk.TclError as exc:
            logger.debug("Window already destroyed: %s", exc)
