"""
Page automation on top of a CDP session.

A CDPPage is bound to one (target_id, session_id) pair. Everything that runs
inside the page goes through evaluate(); interactions use the named snippets
from utils.scripts.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Union

from ..errors import EvaluationError, NavigationError, ScraperError, SelectorTimeoutError
from ..utils.scripts import (
    CLICK_SELECTOR,
    SCROLL,
    SELECTOR_STATE,
    TYPE_INTO,
    PageScript,
)

logger = logging.getLogger(__name__)


class CDPPage:
    """Handle to a single attached browser tab."""

    # Poll interval for wait_for_selector (seconds)
    POLL_INTERVAL = 0.1

    def __init__(self, client, target_id: str, session_id: str):
        self.client = client
        self.target_id = target_id
        self.session_id = session_id

    def __repr__(self) -> str:
        return f"<CDPPage target={self.target_id} session={self.session_id}>"

    async def send(self, method: str, params: Optional[Dict] = None, timeout: Optional[float] = None) -> Dict:
        """Send a command scoped to this page's session."""
        return await self.client.send(method, params, session_id=self.session_id, timeout=timeout)

    # ============================================================
    # NAVIGATION
    # ============================================================

    async def navigate(self, url: str, wait_until: Optional[str] = None, timeout: float = 30.0) -> Dict:
        """
        Navigate to a URL.

        Args:
            url: Destination
            wait_until: 'load' to also wait for Page.loadEventFired
            timeout: Seconds to wait for the command and the load event

        Returns:
            Page.navigate result (frameId, loaderId)

        Raises:
            NavigationError: errorText in the result, or no load event in time
        """
        loaded: Optional[asyncio.Future] = None
        unsubscribe = None

        if wait_until == 'load':
            loaded = asyncio.get_running_loop().create_future()

            def on_load(params):
                if not loaded.done():
                    loaded.set_result(params)

            # Subscribe first so a fast load event is not missed
            unsubscribe = self.client.on('Page.loadEventFired', on_load, session_id=self.session_id)

        try:
            result = await self.send('Page.navigate', {'url': url}, timeout=timeout)

            if result.get('errorText'):
                raise NavigationError(f"Navigation failed: {result['errorText']}")

            if loaded is not None:
                try:
                    await asyncio.wait_for(loaded, timeout=timeout)
                except asyncio.TimeoutError:
                    raise NavigationError(f"Timeout waiting for page load: {url}")

            return result
        finally:
            if unsubscribe:
                unsubscribe()

    async def wait_for_timeout(self, seconds: float):
        """Plain delay, used for render waits."""
        if seconds > 0:
            await asyncio.sleep(seconds)

    # ============================================================
    # EVALUATION
    # ============================================================

    async def evaluate(self, expression: str, timeout: Optional[float] = None) -> Any:
        """
        Evaluate a JavaScript expression and return its JSON value.

        Raises:
            EvaluationError: The script threw inside the page
        """
        result = await self.send('Runtime.evaluate', {
            'expression': expression,
            'returnByValue': True,
            'awaitPromise': True,
        }, timeout=timeout)

        details = result.get('exceptionDetails')
        if details:
            exception = details.get('exception') or {}
            message = exception.get('description') or details.get('text') or 'unknown error'
            raise EvaluationError(f"Evaluation failed: {message}")

        return (result.get('result') or {}).get('value')

    async def evaluate_function(self, script: Union[PageScript, str], *args: Any) -> Any:
        """Call a JS function expression with JSON-encoded arguments."""
        expression = f"({script}).apply(null, {json.dumps(list(args))})"
        return await self.evaluate(expression)

    async def content(self) -> str:
        return await self.evaluate('document.documentElement.outerHTML')

    async def title(self) -> str:
        return await self.evaluate('document.title')

    async def url(self) -> str:
        return await self.evaluate('location.href')

    # ============================================================
    # WAITING / INPUT
    # ============================================================

    async def wait_for_selector(self, selector: str, timeout: float = 30.0, visible: bool = False) -> bool:
        """
        Poll until ``selector`` matches (and is displayed, if ``visible``).

        Raises:
            SelectorTimeoutError: Not found before ``timeout`` seconds
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if await self.evaluate_function(SELECTOR_STATE, selector, visible):
                return True
            if loop.time() >= deadline:
                raise SelectorTimeoutError(f"Timeout waiting for selector: {selector}")
            await asyncio.sleep(self.POLL_INTERVAL)

    async def click(self, selector: str):
        if not await self.evaluate_function(CLICK_SELECTOR, selector):
            raise EvaluationError(f"Element not found: {selector}")

    async def type(self, selector: str, text: str):
        if not await self.evaluate_function(TYPE_INTO, selector, text):
            raise EvaluationError(f"Element not found: {selector}")

    async def scroll(self, fraction: float = 1.0) -> int:
        """Scroll to a fraction of the page height to trigger lazy loading."""
        return await self.evaluate_function(SCROLL, fraction)

    # ============================================================
    # VIEWPORT / SCREENSHOTS
    # ============================================================

    async def set_viewport(self, width: int = 1280, height: int = 800):
        await self.send('Emulation.setDeviceMetricsOverride', {
            'width': width,
            'height': height,
            'deviceScaleFactor': 1,
            'mobile': False,
        })

    async def screenshot(self, format: str = 'png', quality: Optional[int] = None, full_page: bool = False) -> str:
        """
        Capture the page.

        Returns:
            Base64-encoded image data
        """
        params: Dict[str, Any] = {'format': format}
        if quality is not None and format == 'jpeg':
            params['quality'] = quality

        if full_page:
            metrics = await self.send('Page.getLayoutMetrics')
            size = metrics.get('cssContentSize') or metrics.get('contentSize') or {}
            params['clip'] = {
                'x': 0,
                'y': 0,
                'width': size.get('width', 1280),
                'height': size.get('height', 800),
                'scale': 1,
            }
            params['captureBeyondViewport'] = True

        result = await self.send('Page.captureScreenshot', params)
        return result.get('data', '')

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def close(self):
        """Close the tab. Failures are logged and ignored."""
        try:
            await self.client.send('Target.closeTarget', {'targetId': self.target_id})
        except (ScraperError, asyncio.TimeoutError) as e:
            logger.debug(f"Error closing page {self.target_id}: {e}")
