"""Preview command — the recent tail of a transcript as styled lines."""
from __future__ import annotations

import logging
from pathlib import Path

from tpager.formatters.human import render_content_lines
from tpager.parsers import load_transcript
from tpager.session import TranscriptError

logger = logging.getLogger(__name__)

UNAVAILABLE = ("", "  (unable to load preview)")


def preview_lines(path: Path | str, width: int = 80, max_turns: int = 50) -> list[str]:
    """Render the last *max_turns* turns of *path* for a side panel."""
    try:
        transcript = load_transcript(Path(path), tail=max_turns)
    except (TranscriptError, OSError, ValueError) as e:
        logger.debug("preview of %s failed: %s", path, e)
        return list(UNAVAILABLE)
    if transcript is None:
        return list(UNAVAILABLE)
    return render_content_lines(transcript, width=width)
