"""Remote browser access over the Chrome DevTools Protocol."""

from .cdp import CDPClient
from .page import CDPPage
from .session import BrowserSession, create_browserbase_session

__all__ = ['CDPClient', 'CDPPage', 'BrowserSession', 'create_browserbase_session']
