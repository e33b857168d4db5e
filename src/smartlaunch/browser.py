"""Browser-authentication presenters.

A presenter opens the authorization URL, lets the user sign in and resolves
with the callback URL the identity provider redirected to.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Callable, Protocol
from urllib.parse import urlsplit

from smartlaunch.errors import AuthSessionFailedError, MissingCallbackError

logger = logging.getLogger(__name__)


class BrowserAuthenticator(Protocol):
    async def authenticate(self, url: str, callback_scheme: str) -> str:
        """Present *url* and return the callback URL using *callback_scheme*."""
        ...


class ConsoleBrowserAuthenticator:
    """Opens the system browser and reads the callback URL from the console.

    Custom-scheme redirects cannot be caught by a local web server, so the
    user copies the final ``myapp://...`` URL from the browser and pastes it.
    """

    def __init__(
        self,
        open_browser: Callable[[str], bool] = webbrowser.open,
        prompt: Callable[[str], str] = input,
        announce: Callable[[str], None] | None = None,
    ) -> None:
        self._open_browser = open_browser
        self._prompt = prompt
        self._announce = announce

    async def authenticate(self, url: str, callback_scheme: str) -> str:
        logger.info("Sign-in URL: %s", url)
        if self._announce is not None:
            self._announce(url)
        if not self._open_browser(url):
            logger.warning("Could not open a browser; open the URL above manually.")

        try:
            pasted = await asyncio.to_thread(
                self._prompt, f"Paste the {callback_scheme}:// callback URL: "
            )
        except EOFError as exc:
            raise AuthSessionFailedError() from exc

        callback_url = pasted.strip()
        if not callback_url or urlsplit(callback_url).scheme != callback_scheme:
            raise MissingCallbackError()
        return callback_url
