"""
Tests for the CDP WebSocket transport.
"""

import asyncio

import pytest

from menu_scrapers.crawlers.cdp import CDPClient, mask_ws_url
from menu_scrapers.errors import (
    CDPConnectionError,
    CommandTimeoutError,
    ConnectionClosedError,
    ProtocolError,
    TransportError,
)
from tests.conftest import FakeBrowser, FakeWebSocket


def connector_for(ws):
    async def connect(url, **kwargs):
        return ws
    return connect


async def connected_client(ws, timeout=5.0):
    client = CDPClient('wss://connect.test/?apiKey=secret', timeout=timeout, connector=connector_for(ws))
    await client.connect()
    return client


class TestConnection:
    """Test opening and closing the socket."""

    def test_connect_passes_socket_options(self):
        """Test that the connector gets the URL and unlimited frame size."""
        async def run():
            browser = FakeBrowser()
            client = CDPClient('wss://connect.test/', connector=browser.connect)
            await client.connect()
            assert client.is_connected
            await client.disconnect()
            return browser

        browser = asyncio.run(run())
        assert browser.connect_url == 'wss://connect.test/'
        assert browser.connect_kwargs['max_size'] is None

    def test_connect_timeout(self):
        """Test that a socket that never opens raises CDPConnectionError."""
        async def slow_connect(url, **kwargs):
            await asyncio.sleep(1)

        async def run():
            client = CDPClient('wss://connect.test/', timeout=0.05, connector=slow_connect)
            await client.connect()

        with pytest.raises(CDPConnectionError, match="CDP connection timeout after 0.05s"):
            asyncio.run(run())

    def test_connect_os_error(self):
        """Test that a refused connection raises CDPConnectionError."""
        async def refused(url, **kwargs):
            raise OSError("Connection refused")

        async def run():
            client = CDPClient('wss://connect.test/', connector=refused)
            await client.connect()

        with pytest.raises(CDPConnectionError, match="Connection refused"):
            asyncio.run(run())

    def test_send_when_not_connected(self):
        """Test that send() before connect() fails fast."""
        async def run():
            client = CDPClient('wss://connect.test/')
            await client.send('Browser.getVersion')

        with pytest.raises(TransportError, match="CDP not connected"):
            asyncio.run(run())

    def test_mask_ws_url(self):
        """Test that API keys are hidden in logged URLs."""
        masked = mask_ws_url('wss://connect.browserbase.com?apiKey=bb_live_123&sessionId=abc')
        assert 'bb_live_123' not in masked
        assert 'apiKey=***' in masked
        assert 'sessionId=abc' in masked


class TestCommands:
    """Test command/response correlation."""

    def test_send_returns_result(self):
        """Test a simple round trip."""
        async def run():
            ws = FakeWebSocket(lambda m: [{'id': m['id'], 'result': {'product': 'Chrome/120'}}])
            client = await connected_client(ws)
            result = await client.send('Browser.getVersion')
            await client.disconnect()
            return result, ws.sent

        result, sent = asyncio.run(run())
        assert result == {'product': 'Chrome/120'}
        assert sent[0]['method'] == 'Browser.getVersion'
        assert sent[0]['params'] == {}
        assert 'sessionId' not in sent[0]

    def test_ids_are_unique_and_increasing(self):
        """Test that every command gets a new id."""
        async def run():
            ws = FakeWebSocket(lambda m: [{'id': m['id'], 'result': {}}])
            client = await connected_client(ws)
            for _ in range(3):
                await client.send('Runtime.enable')
            await client.disconnect()
            return [m['id'] for m in ws.sent]

        assert asyncio.run(run()) == [1, 2, 3]

    def test_permuted_responses_resolve_by_id(self):
        """Test that replies arriving in reverse order reach the right callers."""
        held = []

        def hold_then_reverse(message):
            held.append(message)
            if len(held) < 3:
                return []
            return [{'id': m['id'], 'result': {'method': m['method']}} for m in reversed(held)]

        async def run():
            ws = FakeWebSocket(hold_then_reverse)
            client = await connected_client(ws)
            results = await asyncio.gather(
                client.send('Page.enable'),
                client.send('Runtime.enable'),
                client.send('Network.enable'),
            )
            await client.disconnect()
            return results

        results = asyncio.run(run())
        assert [r['method'] for r in results] == ['Page.enable', 'Runtime.enable', 'Network.enable']

    def test_error_response_raises_protocol_error(self):
        """Test that an error reply becomes ProtocolError."""
        def reply(message):
            return [{'id': message['id'], 'error': {'code': -32000, 'message': 'No target with given id'}}]

        async def run():
            client = await connected_client(FakeWebSocket(reply))
            try:
                await client.send('Target.attachToTarget', {'targetId': 'missing'})
            finally:
                await client.disconnect()

        with pytest.raises(ProtocolError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.code == -32000
        assert str(exc_info.value) == "CDP Error -32000: No target with given id"

    def test_command_timeout(self):
        """Test that an unanswered command times out and is forgotten."""
        async def run():
            client = await connected_client(FakeWebSocket())
            with pytest.raises(CommandTimeoutError, match="Page.navigate"):
                await client.send('Page.navigate', {'url': 'https://example.com'}, timeout=0.05)
            pending = client.pending_count
            await client.disconnect()
            return pending

        assert asyncio.run(run()) == 0

    def test_session_id_is_attached(self):
        """Test that session-scoped commands carry sessionId."""
        async def run():
            ws = FakeWebSocket(lambda m: [{'id': m['id'], 'result': {}}])
            client = await connected_client(ws)
            await client.send('Runtime.evaluate', {'expression': '1'}, session_id='S1')
            await client.disconnect()
            return ws.sent[0]

        sent = asyncio.run(run())
        assert sent['sessionId'] == 'S1'

    def test_socket_close_fails_pending_commands(self):
        """Test that a closed socket rejects everything still waiting."""
        async def run():
            ws = FakeWebSocket()
            client = await connected_client(ws)
            pending = asyncio.ensure_future(client.send('Page.navigate', {'url': 'https://example.com'}))
            await asyncio.sleep(0.01)
            await ws.close(1006, 'remote went away')
            with pytest.raises(ConnectionClosedError) as exc_info:
                await pending
            return exc_info.value, client.is_connected

        error, connected = asyncio.run(run())
        assert error.code == 1006
        assert connected is False

    def test_disconnect_fails_pending_commands(self):
        """Test that disconnect() rejects outstanding commands."""
        async def run():
            client = await connected_client(FakeWebSocket())
            pending = asyncio.ensure_future(client.send('Runtime.evaluate', {'expression': '1'}))
            await asyncio.sleep(0.01)
            await client.disconnect()
            with pytest.raises(ConnectionClosedError):
                await pending
            return client.pending_count

        assert asyncio.run(run()) == 0


class TestEvents:
    """Test event subscriptions."""

    def test_events_scoped_to_session(self):
        """Test that a session-scoped handler ignores other sessions."""
        async def run():
            ws = FakeWebSocket()
            client = await connected_client(ws)
            received = []
            client.on('Page.loadEventFired', received.append, session_id='S1')

            ws.push({'method': 'Page.loadEventFired', 'params': {'timestamp': 1}, 'sessionId': 'S2'})
            ws.push({'method': 'Page.loadEventFired', 'params': {'timestamp': 2}, 'sessionId': 'S1'})
            await asyncio.sleep(0.01)
            await client.disconnect()
            return received

        assert asyncio.run(run()) == [{'timestamp': 2}]

    def test_unsubscribe(self):
        """Test that the returned callable removes the handler."""
        async def run():
            ws = FakeWebSocket()
            client = await connected_client(ws)
            received = []
            unsubscribe = client.on('Target.targetCreated', received.append)
            assert client.listener_count('Target.targetCreated') == 1

            unsubscribe()
            ws.push({'method': 'Target.targetCreated', 'params': {'targetInfo': {}}})
            await asyncio.sleep(0.01)
            count = client.listener_count('Target.targetCreated')
            await client.disconnect()
            return received, count

        received, count = asyncio.run(run())
        assert received == []
        assert count == 0

    def test_failing_handler_does_not_stop_reader(self):
        """Test that a handler exception is contained."""
        def broken(params):
            raise ValueError("boom")

        async def run():
            ws = FakeWebSocket(lambda m: [{'id': m['id'], 'result': {'ok': True}}])
            client = await connected_client(ws)
            client.on('Page.frameNavigated', broken)
            ws.push({'method': 'Page.frameNavigated', 'params': {}})
            result = await client.send('Page.enable')
            await client.disconnect()
            return result

        assert asyncio.run(run()) == {'ok': True}

    def test_unparseable_frame_is_ignored(self):
        """Test that garbage on the socket does not break correlation."""
        async def run():
            ws = FakeWebSocket(lambda m: [{'id': m['id'], 'result': {'ok': True}}])
            client = await connected_client(ws)
            ws._inbox.put_nowait('not json')
            result = await client.send('Page.enable')
            await client.disconnect()
            return result

        assert asyncio.run(run()) == {'ok': True}


class TestTargets:
    """Test tab creation and attachment."""

    def test_create_page_attaches_and_enables(self):
        """Test the createTarget -> attachToTarget -> enable sequence."""
        async def run():
            browser = FakeBrowser(pages=0)
            client = CDPClient('wss://connect.test/', connector=browser.connect)
            await client.connect()
            page = await client.create_page()
            await client.disconnect()
            return browser, page

        browser, page = asyncio.run(run())
        assert page.target_id == 'T-new-1'
        assert page.session_id == 'S-T-new-1'
        assert browser.methods() == [
            'Target.createTarget',
            'Target.attachToTarget',
            'Page.enable',
            'Runtime.enable',
        ]
        attach = browser.ws.sent[1]
        assert attach['params'] == {'targetId': 'T-new-1', 'flatten': True}
        assert browser.ws.sent[2]['sessionId'] == 'S-T-new-1'

    def test_get_first_page(self):
        """Test attaching to the browser's existing tab."""
        async def run():
            browser = FakeBrowser(pages=2)
            client = CDPClient('wss://connect.test/', connector=browser.connect)
            await client.connect()
            page = await client.get_first_page()
            await client.disconnect()
            return page

        page = asyncio.run(run())
        assert page.target_id == 'T1'

    def test_get_first_page_without_tabs(self):
        """Test that a browser with no page targets yields None."""
        async def run():
            browser = FakeBrowser(pages=0)
            client = CDPClient('wss://connect.test/', connector=browser.connect)
            await client.connect()
            page = await client.get_first_page()
            await client.disconnect()
            return page

        assert asyncio.run(run()) is None
