import logging
from pathlib import Path
from typing import Union

import pyperclip
from rich.console import Console
from rich.panel import Panel

from ..errors import ClipboardFailure

logger = logging.getLogger(__name__)

console = Console()

EXPORT_FILENAME = "transcript.txt"


def copy_to_clipboard(text: str) -> None:
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as exc:
        raise ClipboardFailure(f"Clipboard is not available: {exc}") from exc


def show_copied(text: str) -> None:
    console.print(Panel.fit(text or "(empty)", title="Transcript copied", border_style="green"))


def export_text(text: str, path: Union[str, Path]) -> Path:
    """Write ``text`` as UTF-8 with no added framing or newline translation.

    A directory path gets the default file name.
    """
    path = Path(path)
    if path.is_dir():
        path = path / EXPORT_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))
    logger.info("Exported %d characters to %s", len(text), path)
    return path
