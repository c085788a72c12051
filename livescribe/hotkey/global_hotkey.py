# livescribe/hotkey/global_hotkey.py
import asyncio
import logging
from typing import Callable, Set, Tuple

logger = logging.getLogger(__name__)

MODIFIERS = ("alt", "cmd", "ctrl", "shift")
_ALIASES = {"control": "ctrl", "option": "alt"}


def _normalize(name: str) -> str:
    name = (name or "").lower()
    for suffix in ("_l", "_r", "_gr"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    return _ALIASES.get(name, name)


def _parse_hotkey(h: str) -> Tuple[Set[str], str]:
    parts = [_normalize(p.strip()) for p in h.split("+") if p.strip()]
    if not parts:
        raise ValueError(f"Empty hotkey: {h!r}")
    return set(parts[:-1]), parts[-1]


class HotkeyMatcher:
    """Tracks held modifiers and reports when the configured combo is hit."""

    def __init__(self, combo: str):
        self.mods, self.key = _parse_hotkey(combo)
        self.current: Set[str] = set()

    def press(self, name: str) -> bool:
        name = _normalize(name)
        if name in MODIFIERS:
            self.current.add(name)
            return False
        return bool(name) and name == self.key and self.mods <= self.current

    def release(self, name: str) -> None:
        self.current.discard(_normalize(name))


def _key_name(k) -> str:
    name = getattr(k, "name", None) or getattr(k, "char", None)
    return name or str(k)


def start_hotkey(combo: str, loop: asyncio.AbstractEventLoop, on_trigger: Callable[[], None]):
    """Listen globally for ``combo`` and run ``on_trigger`` on ``loop``."""
    from pynput import keyboard

    matcher = HotkeyMatcher(combo)

    def on_press(k):
        if matcher.press(_key_name(k)):
            loop.call_soon_threadsafe(on_trigger)
        return True

    def on_release(k):
        matcher.release(_key_name(k))

    listener = keyboard.Listener(on_press=on_press, on_release=on_release)
    listener.daemon = True
    listener.start()
    logger.info("Hotkey %s copies the transcript", combo)
    return listener
