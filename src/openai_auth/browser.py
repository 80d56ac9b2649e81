"""Best-effort browser launching for the authorization URL."""

from __future__ import annotations

import logging
import webbrowser

logger = logging.getLogger(__name__)


def open_browser(url: str) -> bool:
    """Open *url* in the user's default browser.

    Failure is never fatal: the caller is expected to print the URL so the
    user can open it by hand.

    Returns:
        True if a browser reported that it opened the URL.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("Could not open browser: %s", exc)
        return False

    if not opened:
        logger.warning("No usable browser found to open the authorization URL")
    return bool(opened)
