"""
Minimal Chrome DevTools Protocol client over a single WebSocket.

Connects to BrowserBase (or any CDP-compatible endpoint) and multiplexes
commands, responses and events for many attached pages over one socket.
Responses are matched to callers by message id only, never by arrival order.

CDP reference: https://chromedevtools.github.io/devtools-protocol/
"""

import asyncio
import itertools
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

import websockets
from websockets.exceptions import ConnectionClosed

from ..errors import (
    CDPConnectionError,
    CommandTimeoutError,
    ConnectionClosedError,
    ProtocolError,
    TransportError,
)
from .page import CDPPage

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Any]
Unsubscribe = Callable[[], None]


def mask_ws_url(url: str) -> str:
    """Hide API keys embedded in connect URLs before logging them."""
    return re.sub(r'(apiKey|api_key|signingKey)=[^&]+', r'\1=***', url)


class CDPClient:
    """
    CDP transport: one WebSocket, many sessions.

    Usage:
        client = CDPClient(connect_url)
        await client.connect()

        page = await client.create_page()
        await page.navigate('https://example.com')
        title = await page.evaluate('document.title')
        await page.close()

        await client.disconnect()
    """

    def __init__(
        self,
        ws_url: str,
        timeout: float = 30.0,
        connector: Optional[Callable[..., Any]] = None,
        debug: bool = False
    ):
        """
        Initialize the client.

        Args:
            ws_url: CDP WebSocket endpoint
            timeout: Connect timeout and per-command timeout in seconds
            connector: Coroutine function opening the socket (websockets.connect)
            debug: Log every command and event
        """
        self.ws_url = ws_url
        self.timeout = timeout
        self.debug = debug
        self._connector = connector or websockets.connect
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, Tuple[str, asyncio.Future]] = {}
        self._listeners: Dict[str, List[Tuple[EventHandler, Optional[str]]]] = {}
        self._connected = False

    def _log(self, message: str):
        if self.debug:
            logger.debug(f"[CDP] {message}")

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ============================================================
    # CONNECTION
    # ============================================================

    async def connect(self):
        """
        Open the WebSocket.

        Raises:
            CDPConnectionError: If the socket does not open within the timeout
        """
        if self._connected:
            return

        self._log(f"Connecting to {mask_ws_url(self.ws_url)}")

        async def open_socket():
            return await self._connector(
                self.ws_url,
                max_size=None,
                ping_interval=20,
            )

        try:
            self._ws = await asyncio.wait_for(open_socket(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CDPConnectionError(f"CDP connection timeout after {self.timeout}s")
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise CDPConnectionError(f"CDP WebSocket error: {e}") from e

        self._connected = True
        self._reader = asyncio.create_task(self._read_loop())
        self._log("Connected")

    async def disconnect(self):
        """Close the WebSocket. Pending commands fail with ConnectionClosedError."""
        ws = self._ws
        if ws is None:
            return

        self._connected = False
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error closing CDP socket: {e}")

        if self._reader is not None:
            try:
                await asyncio.wait_for(self._reader, timeout=2.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._reader.cancel()
            self._reader = None

        self._fail_pending(ConnectionClosedError(
            getattr(ws, 'close_code', None), getattr(ws, 'close_reason', None) or 'disconnected'
        ))
        self._ws = None

    async def _read_loop(self):
        """Dispatch inbound frames until the socket closes."""
        ws = self._ws
        try:
            async for raw in ws:
                self._handle_message(raw)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.warning(f"CDP reader stopped: {e}")
        finally:
            self._connected = False
            code = getattr(ws, 'close_code', None)
            reason = getattr(ws, 'close_reason', None) or ''
            self._log(f"WebSocket closed: {code} {reason}")
            self._fail_pending(ConnectionClosedError(code, reason))

    def _fail_pending(self, error: Exception):
        for message_id, (_, future) in list(self._pending.items()):
            self._pending.pop(message_id, None)
            if not future.done():
                future.set_exception(error)

    # ============================================================
    # MESSAGES
    # ============================================================

    def _handle_message(self, raw):
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode('utf-8')
            message = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            logger.debug(f"Failed to parse CDP message: {e}")
            return

        if 'id' in message:
            entry = self._pending.pop(message['id'], None)
            if entry is None:
                # Late reply for a command that already timed out
                return
            method, future = entry
            if future.done():
                return
            error = message.get('error')
            if error:
                future.set_exception(ProtocolError(
                    error.get('code'), error.get('message', ''), error.get('data')
                ))
            else:
                future.set_result(message.get('result') or {})
            return

        method = message.get('method')
        if method:
            self._dispatch_event(method, message.get('params') or {}, message.get('sessionId'))

    def _dispatch_event(self, method: str, params: Dict[str, Any], session_id: Optional[str]):
        self._log(f"Event: {method}")
        for handler, wanted_session in list(self._listeners.get(method, ())):
            if wanted_session is not None and wanted_session != session_id:
                continue
            try:
                handler(params)
            except Exception as e:
                logger.warning(f"CDP event handler for {method} failed: {e}")

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Send a command and wait for its response.

        Args:
            method: CDP method, e.g. 'Page.navigate'
            params: Method parameters
            session_id: Target session the command is addressed to
            timeout: Override of the client's command timeout

        Returns:
            The ``result`` object of the response

        Raises:
            TransportError: Not connected
            CommandTimeoutError: No response in time
            ConnectionClosedError: Socket closed while waiting
            ProtocolError: Response carried an error
        """
        if self._ws is None or not self._connected:
            raise TransportError("CDP not connected")

        message_id = next(self._ids)
        message: Dict[str, Any] = {'id': message_id, 'method': method, 'params': params or {}}
        if session_id:
            message['sessionId'] = session_id

        future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = (method, future)
        self._log(f"Send #{message_id}: {method}")

        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            self._pending.pop(message_id, None)
            raise ConnectionClosedError(getattr(self._ws, 'close_code', None), str(e)) from e

        wait = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(future, timeout=wait)
        except asyncio.TimeoutError:
            raise CommandTimeoutError(method, wait)
        finally:
            self._pending.pop(message_id, None)

    # ============================================================
    # EVENTS
    # ============================================================

    def on(self, event: str, handler: EventHandler, session_id: Optional[str] = None) -> Unsubscribe:
        """
        Subscribe to a CDP event.

        Args:
            event: Event method name, e.g. 'Page.loadEventFired'
            handler: Called with the event params
            session_id: Only deliver events from this session

        Returns:
            Callable that removes the subscription
        """
        self._listeners.setdefault(event, []).append((handler, session_id))
        return lambda: self.off(event, handler, session_id)

    def off(self, event: str, handler: EventHandler, session_id: Optional[str] = None):
        """Remove a subscription added with on()."""
        listeners = self._listeners.get(event)
        if listeners is None:
            return
        if (handler, session_id) in listeners:
            listeners.remove((handler, session_id))
        if not listeners:
            del self._listeners[event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    # ============================================================
    # TARGETS
    # ============================================================

    async def get_targets(self) -> List[Dict[str, Any]]:
        """List targets (tabs, workers, ...) known to the browser."""
        result = await self.send('Target.getTargets')
        return result.get('targetInfos', [])

    async def create_page(self, url: str = 'about:blank') -> 'CDPPage':
        """Create a new tab, attach to it and enable Page/Runtime."""
        result = await self.send('Target.createTarget', {'url': url})
        target_id = result['targetId']
        self._log(f"Created target {target_id}")
        return await self.attach_to_page(target_id)

    async def attach_to_page(self, target_id: str) -> 'CDPPage':
        """Attach a flattened session to an existing target."""
        result = await self.send('Target.attachToTarget', {'targetId': target_id, 'flatten': True})
        session_id = result['sessionId']
        self._log(f"Attached to {target_id}, session {session_id}")

        await self.send('Page.enable', session_id=session_id)
        await self.send('Runtime.enable', session_id=session_id)

        return CDPPage(self, target_id, session_id)

    async def get_first_page(self) -> Optional['CDPPage']:
        """Attach to the first existing page target, if any."""
        targets = await self.get_targets()
        page_target = next((t for t in targets if t.get('type') == 'page'), None)
        if page_target is None:
            return None
        return await self.attach_to_page(page_target['targetId'])
