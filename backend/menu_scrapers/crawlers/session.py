"""
BrowserBase-backed browser session.

Turns "I need a browser" into a ready CDP page:
  1. create a remote session over REST and get its connectUrl
  2. open the CDP WebSocket
  3. attach to the default tab (or create one)
  4. set a fixed viewport
"""

import logging
from typing import Any, Callable, Optional, Tuple, Union

import httpx

from ..errors import SessionError
from ..utils.scripts import PageScript
from .cdp import CDPClient
from .page import CDPPage

logger = logging.getLogger(__name__)

BROWSERBASE_API_URL = 'https://www.browserbase.com'
VIEWPORT = (1280, 800)


async def create_browserbase_session(
    api_key: str,
    project_id: str,
    api_url: str = BROWSERBASE_API_URL,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0
) -> Tuple[str, str]:
    """
    Create a remote browser session.

    Returns:
        (session_id, connect_url)

    Raises:
        SessionError: Non-2xx response or no connectUrl in the body
    """
    url = f"{api_url.rstrip('/')}/v1/sessions"
    headers = {
        'Content-Type': 'application/json',
        'x-bb-api-key': api_key,
    }

    async def post(http: httpx.AsyncClient) -> httpx.Response:
        return await http.post(url, json={'projectId': project_id}, headers=headers)

    if client is not None:
        response = await post(client)
    else:
        async with httpx.AsyncClient(timeout=timeout) as http:
            response = await post(http)

    if not response.is_success:
        raise SessionError(
            f"BrowserBase session creation failed: {response.status_code} {response.text}"
        )

    try:
        data = response.json()
    except ValueError:
        raise SessionError("BrowserBase session response is not JSON")

    connect_url = data.get('connectUrl')
    if not connect_url:
        raise SessionError("BrowserBase session missing connectUrl")

    logger.info(f"BrowserBase session created: {data.get('id')}")
    return data.get('id', ''), connect_url


class BrowserSession:
    """
    One remote browser with a default page.

    Usage:
        async with BrowserSession(api_key, project_id) as browser:
            await browser.goto('https://example.com')
            html = await browser.evaluate('document.body.innerHTML')
    """

    def __init__(
        self,
        api_key: str,
        project_id: str,
        api_url: str = BROWSERBASE_API_URL,
        cdp_timeout: float = 30.0,
        debug: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
        connector: Optional[Callable[..., Any]] = None
    ):
        self.api_key = api_key
        self.project_id = project_id
        self.api_url = api_url
        self.cdp_timeout = cdp_timeout
        self.debug = debug
        self.session_id: Optional[str] = None
        self._http = http_client
        self._connector = connector
        self._client: Optional[CDPClient] = None
        self._page: Optional[CDPPage] = None

    async def __aenter__(self) -> 'BrowserSession':
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def client(self) -> Optional[CDPClient]:
        return self._client

    async def init(self):
        """Create the remote session, connect, and prepare the default page."""
        self.session_id, connect_url = await create_browserbase_session(
            self.api_key, self.project_id, self.api_url, client=self._http
        )

        self._client = CDPClient(
            connect_url,
            timeout=self.cdp_timeout,
            connector=self._connector,
            debug=self.debug
        )
        await self._client.connect()

        self._page = await self._client.get_first_page() or await self._client.create_page()
        await self._page.set_viewport(*VIEWPORT)

    def _require_page(self) -> CDPPage:
        if self._page is None or self._client is None:
            raise SessionError("Session not initialized")
        return self._page

    def get_page(self) -> Optional[CDPPage]:
        return self._page

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: float = 30.0):
        await self._require_page().navigate(url, wait_until=wait_until, timeout=timeout)

    async def wait_for_timeout(self, seconds: float):
        await self._require_page().wait_for_timeout(seconds)

    async def evaluate(self, expression: str) -> Any:
        return await self._require_page().evaluate(expression)

    async def evaluate_function(self, script: Union[PageScript, str], *args: Any) -> Any:
        return await self._require_page().evaluate_function(script, *args)

    async def screenshot(self, **kwargs) -> str:
        return await self._require_page().screenshot(**kwargs)

    async def create_page(self, url: str = 'about:blank') -> CDPPage:
        """Open an extra tab on the same WebSocket (used by the page pool)."""
        if self._client is None:
            raise SessionError("Session not initialized")
        return await self._client.create_page(url)

    async def close(self):
        """Close the default page and the socket. Never raises."""
        if self._page is not None:
            try:
                await self._page.close()
            except Exception as e:
                logger.debug(f"Error closing page: {e}")
        if self._client is not None:
            try:
                await self._client.disconnect()
            except Exception as e:
                logger.debug(f"Error disconnecting CDP client: {e}")
        self._page = None
        self._client = None
