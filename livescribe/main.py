# livescribe/main.py
import argparse
import asyncio
import logging
from dataclasses import replace
from typing import List, Optional

from dotenv import load_dotenv

from .config import Settings, load_settings
from .controller import build_controller
from .hotkey.global_hotkey import start_hotkey
from .log import setup_logging
from .ui.output import show_copied
from .ui.window import TranscriptWindow

logger = logging.getLogger(__name__)


async def run_app(settings: Settings) -> None:
    # Tk and the controller share this event loop
    window = TranscriptWindow(settings)
    controller = build_controller(settings, window.surface)
    window.bind(controller)

    def copy_from_hotkey():
        if controller.copy_transcript():
            show_copied(controller.transcript.finalized)

    listener = None
    if settings.hotkey:
        try:
            listener = start_hotkey(settings.hotkey, asyncio.get_running_loop(), copy_from_hotkey)
        except (ImportError, OSError, ValueError) as exc:
            logger.warning("Global hotkey disabled: %s", exc)

    try:
        async with controller:
            await window.run()
    finally:
        if listener is not None:
            listener.stop()
        window.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="livescribe", description="Live speech to text")
    parser.add_argument("--lang", help="recognition locale, e.g. en-US")
    parser.add_argument("--backend", choices=("realtime", "whisper"), help="speech engine")
    parser.add_argument("--list-devices", action="store_true", help="list audio inputs and exit")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args(argv)

    load_dotenv(override=True)
    settings = load_settings()
    if args.lang:
        settings = replace(settings, language=args.lang)
    if args.backend:
        settings = replace(settings, stt_backend=args.backend)
    if args.log_level:
        settings = replace(settings, log_level=args.log_level.upper())
    setup_logging(settings.log_level)

    if args.list_devices:
        from .audio.capture import list_input_devices

        for d in list_input_devices():
            print(f"[{d['index']}] {d['name']}  (inputs:{d['channels']})")
        return 0

    asyncio.run(run_app(settings))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
