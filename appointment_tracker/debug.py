"""Debug snapshots of fetched pages for postmortem analysis."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def save_debug_html(debug_dir: Path, target: str, reason: str, html: str) -> Optional[Path]:
    """
    Write html to <debug_dir>/<target>-<reason>-<timestamp>.html.

    Returns the written path, or None if the write failed (logged, not raised).
    """
    timestamp = datetime.now().isoformat().replace(":", "-").replace(".", "-")
    path = Path(debug_dir) / f"{target}-{reason}-{timestamp}.html"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to save debug HTML for {target} ({reason}): {e}")
        return None
    logger.debug(f"Saved debug HTML to {path}")
    return path
