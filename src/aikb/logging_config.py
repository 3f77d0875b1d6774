"""
Logging configuration for aikb.

Library loggers are kept quiet unless verbose output is requested.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore", "chromadb", "sentence_transformers", "urllib3")


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """
    Attach a rich handler to the aikb logger.

    Args:
        verbose: DEBUG level for aikb and INFO for libraries, instead of
            INFO for aikb and WARNING for libraries.
        console: Console to log to. Defaults to stderr so stdout stays
            usable for the native messaging protocol.
    """
    logger = logging.getLogger("aikb")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=verbose,
            rich_tracebacks=verbose,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="%H:%M:%S"))
        logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if verbose else logging.WARNING)


def preview(text: str, length: int = 50) -> str:
    """Short single-line preview of captured text for log lines."""
    text = (text or "").replace("\n", " ")
    return text if len(text) <= length else text[:length] + "..."
