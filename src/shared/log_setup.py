import logging

from src.config import LOG_PREVIEW_CHARS


# ============================================================================
# LOGGING
# ============================================================================

def setup_logging(name: str) -> logging.Logger:
    """Configures a standard logger."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - [%(levelname)s] - %(message)s",
        datefmt="%H:%M:%S"
    )
    return logging.getLogger(name)


def preview(text: str, limit: int = LOG_PREVIEW_CHARS) -> str:
    """Shorten text for a single log line.

    Newlines are escaped so the preview stays on one line.
    """
    if text is None:
        return "<none>"
    flat = text.replace("\n", "\\n")
    if len(flat) <= limit:
        return flat
    return f"{flat[:limit]}... ({len(text)} chars)"
