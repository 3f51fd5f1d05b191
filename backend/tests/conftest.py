"""
Pytest configuration and fixtures for the menu scraper tests.

The fakes here stand in for the remote browser at three levels:
- FakeWebSocket / FakeBrowser: a scripted CDP endpoint for the transport
- FakePage: answers the named in-page scripts directly
- FakeSession: a BrowserSession double for the orchestrator
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from api.main import app
from menu_scrapers.base import Location
from menu_scrapers.config import ScrapeOptions
from menu_scrapers.utils import retry
from menu_scrapers.utils.scripts import SCRIPTS


# ============================================================
# CDP LEVEL
# ============================================================

class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder: Optional[Callable[[Dict], List[Dict]]] = None):
        self.responder = responder
        self.sent: List[Dict] = []
        self.close_code = None
        self.close_reason = None
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str):
        message = json.loads(raw)
        self.sent.append(message)
        if self.responder is not None:
            for reply in self.responder(message) or []:
                self.push(reply)

    def push(self, message: Dict):
        """Deliver a frame to the client."""
        self._inbox.put_nowait(json.dumps(message))

    async def close(self, code: int = 1000, reason: str = ''):
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


class PageException(Exception):
    """Raised by a FakeBrowser evaluate callback to simulate a thrown script."""


def parse_script_call(expression: str):
    """Split an evaluate_function() expression into (script name, args)."""
    for name, script in SCRIPTS.items():
        prefix = f"({script.source}).apply(null, "
        if expression.startswith(prefix):
            return name, json.loads(expression[len(prefix):-1])
    return None, []


class FakeBrowser:
    """Scripted CDP endpoint answering commands the way Chrome does."""

    def __init__(
        self,
        pages: int = 1,
        evaluate: Optional[Callable[[str, Optional[str]], Any]] = None,
        load_events: bool = True,
        navigate_error: Optional[str] = None
    ):
        self.targets = [f"T{i}" for i in range(1, pages + 1)]
        self.evaluate = evaluate or (lambda expression, session_id: None)
        self.load_events = load_events
        self.navigate_error = navigate_error
        self.created = 0
        self.closed_targets: List[str] = []
        self.connect_url = None
        self.connect_kwargs: Dict[str, Any] = {}
        self.ws = FakeWebSocket(self.respond)

    def methods(self) -> List[str]:
        return [m['method'] for m in self.ws.sent]

    def respond(self, message: Dict) -> List[Dict]:
        method = message['method']
        params = message.get('params') or {}
        session_id = message.get('sessionId')
        events = []

        if method == 'Target.getTargets':
            result = {'targetInfos': [
                {'targetId': t, 'type': 'page', 'url': 'about:blank'} for t in self.targets
            ]}
        elif method == 'Target.createTarget':
            self.created += 1
            target_id = f"T-new-{self.created}"
            self.targets.append(target_id)
            result = {'targetId': target_id}
        elif method == 'Target.attachToTarget':
            result = {'sessionId': f"S-{params['targetId']}"}
        elif method == 'Target.closeTarget':
            self.closed_targets.append(params['targetId'])
            result = {'success': True}
        elif method == 'Page.navigate':
            result = {'frameId': 'F1', 'loaderId': 'L1'}
            if self.navigate_error:
                result['errorText'] = self.navigate_error
            elif self.load_events:
                events.append({
                    'method': 'Page.loadEventFired',
                    'params': {'timestamp': 1.0},
                    'sessionId': session_id,
                })
        elif method == 'Runtime.evaluate':
            try:
                value = self.evaluate(params['expression'], session_id)
            except PageException as e:
                result = {
                    'result': {'type': 'object', 'subtype': 'error'},
                    'exceptionDetails': {'text': 'Uncaught', 'exception': {'description': str(e)}},
                }
            else:
                result = {'result': {'type': 'object', 'value': value}}
        elif method == 'Page.captureScreenshot':
            result = {'data': 'aW1hZ2U='}
        elif method == 'Page.getLayoutMetrics':
            result = {'cssContentSize': {'width': 1280, 'height': 4000}}
        else:
            result = {}

        return [{'id': message['id'], 'result': result}] + events

    async def connect(self, url: str, **kwargs):
        self.connect_url = url
        self.connect_kwargs = kwargs
        return self.ws


# ============================================================
# PAGE / SESSION LEVEL
# ============================================================

def snapshot(html: str = '', text: Optional[str] = None, url: str = '') -> Dict[str, Any]:
    """PAGE_SNAPSHOT-shaped dict."""
    return {'url': url, 'title': '', 'html': html, 'text': text if text is not None else ''}


class FakePage:
    """Page double that answers the named in-page scripts."""

    def __init__(
        self,
        snapshots: Optional[Dict[str, Dict]] = None,
        controls: Optional[Dict[str, Any]] = None,
        feedback: Optional[Dict[str, Any]] = None,
        navigate_errors: Optional[Dict[str, Exception]] = None
    ):
        self.snapshots = snapshots if snapshots is not None else {}
        self.controls = controls or {}
        self.feedback = feedback or {}
        self.navigate_errors = navigate_errors or {}
        self.current_url = ''
        self.input_value = self.controls.get('inputValue')
        self.calls: List[tuple] = []
        self.navigated: List[str] = []
        self.closed = False

    def script_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def navigate(self, url: str, wait_until: Optional[str] = None, timeout: float = 30.0):
        self.navigated.append(url)
        error = self.navigate_errors.get(url)
        if error is not None:
            raise error
        self.current_url = url
        return {'frameId': 'F1'}

    async def wait_for_timeout(self, seconds: float):
        return None

    async def evaluate_function(self, script, *args):
        self.calls.append((script.name, args))
        if script.name == 'page_snapshot':
            return dict(self.snapshots.get(self.current_url) or snapshot(url=self.current_url))
        if script.name == 'cart_controls':
            return dict(self.controls)
        if script.name == 'set_quantity':
            self.input_value = args[1]
            return args[1]
        if script.name == 'cart_feedback':
            return dict(self.feedback)
        return None

    async def close(self):
        self.closed = True


class FakeSession:
    """BrowserSession double; the main page and pool pages share snapshots."""

    def __init__(
        self,
        snapshots: Dict[str, Dict],
        navigate_errors: Optional[Dict[str, Exception]] = None,
        init_error: Optional[Exception] = None,
        extra_pages: int = 3
    ):
        self.snapshots = snapshots
        self.navigate_errors = navigate_errors or {}
        self.init_error = init_error
        self.extra_pages = extra_pages
        self.main = FakePage(snapshots, navigate_errors=self.navigate_errors)
        self.created: List[FakePage] = []
        self.initialized = False
        self.closed = False

    async def init(self):
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    def get_page(self):
        return self.main

    async def create_page(self, url: str = 'about:blank'):
        if len(self.created) >= self.extra_pages:
            raise RuntimeError("Too many tabs")
        page = FakePage(self.snapshots)
        self.created.append(page)
        return page

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: float = 30.0):
        await self.main.navigate(url, wait_until, timeout)

    async def wait_for_timeout(self, seconds: float):
        return None

    async def evaluate_function(self, script, *args):
        return await self.main.evaluate_function(script, *args)

    async def close(self):
        self.closed = True


def make_location(slug: str, disabled: bool = False) -> Location:
    return Location(
        name=slug.replace('-', ' ').title(),
        menu_url=f"https://shop.test/{slug}/menu",
        retailer_slug=slug,
        retailer_name=slug.split('-')[0].title(),
        region='nyc',
        city='New York',
        disabled=disabled,
    )


def fast_options(**overrides) -> ScrapeOptions:
    """ScrapeOptions with every wait and delay set to zero."""
    values = dict(
        menu_render_wait=0,
        age_gate_wait=0,
        location_retry_delay=0,
        location_delay=0,
        page_render_wait=0,
        batch_delay=0,
        cart_hack_wait=0,
        session_retry_delay=0,
        navigation_retry_delay=0,
    )
    values.update(overrides)
    return ScrapeOptions(**values)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def sleeps(monkeypatch):
    """Replace retry.sleep with a recorder; returns the recorded delays."""
    recorded: List[float] = []

    async def fake_sleep(seconds: float):
        recorded.append(seconds)

    monkeypatch.setattr(retry, 'sleep', fake_sleep)
    return recorded


@pytest.fixture(scope="function")
def client():
    """Create a test client for the API."""
    # Use TestClient directly without context manager so the scheduler stays off
    test_client = TestClient(app)
    yield test_client
