"""
Library of JavaScript snippets evaluated inside the remote page.

Every snippet is a plain JS function expression. Arguments are passed as JSON
by CDPPage.evaluate_function(), so nothing from the Python side is ever
serialised as code. Bump SCRIPT_LIBRARY_VERSION when a snippet changes
behaviour; it is reported by /health.

Snippets that take part in the cart-hack mark the controls they found with a
``data-inv-probe`` attribute so that later steps address the same elements.
"""

from dataclasses import dataclass
from typing import Dict

SCRIPT_LIBRARY_VERSION = "2.1.0"

PROBE_ATTR = 'data-inv-probe'


@dataclass(frozen=True)
class PageScript:
    """A named JavaScript function expression."""
    name: str
    source: str

    def __str__(self) -> str:
        return self.source


# Rendered HTML, visible text and location of the current document.
PAGE_SNAPSHOT = PageScript('page_snapshot', """
function() {
  return {
    url: location.href,
    title: document.title,
    html: document.documentElement.outerHTML,
    text: document.body ? (document.body.innerText || '') : ''
  };
}
""")

# Clicks the first button whose text matches the allow-list.
# Returns the clicked button's text, or null.
DISMISS_AGE_GATE = PageScript('dismiss_age_gate', """
function(exact, contains) {
  const buttons = Array.from(document.querySelectorAll('button, [role="button"], a.button'));
  for (const btn of buttons) {
    const text = (btn.textContent || '').trim().toLowerCase();
    if (!text) continue;
    if (exact.includes(text) || contains.some(function(c) { return text.includes(c); })) {
      btn.click();
      return text;
    }
  }
  return null;
}
""")

# Scrolls to a fraction of the document height (lazy-loaded menus).
SCROLL = PageScript('scroll', """
function(fraction) {
  const height = document.body ? document.body.scrollHeight : 0;
  window.scrollTo(0, Math.floor(height * fraction));
  return window.scrollY;
}
""")

SELECTOR_STATE = PageScript('selector_state', """
function(selector, visible) {
  const el = document.querySelector(selector);
  if (!el) return false;
  if (!visible) return true;
  const style = window.getComputedStyle(el);
  return style.display !== 'none' && style.visibility !== 'hidden';
}
""")

CLICK_SELECTOR = PageScript('click_selector', """
function(selector) {
  const el = document.querySelector(selector);
  if (!el) return false;
  el.click();
  return true;
}
""")

TYPE_INTO = PageScript('type_into', """
function(selector, text) {
  const el = document.querySelector(selector);
  if (!el) return false;
  el.focus();
  el.value = text;
  el.dispatchEvent(new Event('input', { bubbles: true }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
  return true;
}
""")

# Locates add-to-cart button, quantity input and increment control.
CART_CONTROLS = PageScript('cart_controls', """
function(attr) {
  document.querySelectorAll('[' + attr + ']').forEach(function(el) { el.removeAttribute(attr); });

  let addButton = null;
  document.querySelectorAll('button:not([disabled])').forEach(function(btn) {
    const text = (btn.textContent || '').trim().toLowerCase();
    if (text.includes('add') && (text.includes('cart') || text.includes('bag') || text.length < 20)) {
      addButton = addButton || btn;
    }
  });

  const input = document.querySelector(
    'input[type="number"], input[name*="qty"], input[name*="quantity"], input[aria-label*="uantity"]'
  );

  let increment = null;
  document.querySelectorAll('button:not([disabled])').forEach(function(btn) {
    const label = ((btn.getAttribute('aria-label') || '') + ' ' + (btn.textContent || '')).trim().toLowerCase();
    if (label === '+' || label.includes('increase') || label.includes('increment') || label.includes('add one')) {
      increment = increment || btn;
    }
  });

  if (addButton) addButton.setAttribute(attr, 'add');
  if (input) input.setAttribute(attr, 'input');
  if (increment) increment.setAttribute(attr, 'increment');

  return {
    hasAddButton: !!addButton,
    hasInput: !!input,
    hasIncrement: !!increment,
    inputValue: input ? input.value : null,
    inputMax: input && input.max ? input.max : null
  };
}
""")

# Writes a value into the probed quantity input and fires input/change/blur.
SET_QUANTITY = PageScript('set_quantity', """
function(attr, value) {
  const input = document.querySelector('[' + attr + '="input"]');
  if (!input) return null;
  const setter = Object.getOwnPropertyDescriptor(HTMLInputElement.prototype, 'value');
  if (setter && setter.set) {
    setter.set.call(input, String(value));
  } else {
    input.value = String(value);
  }
  input.dispatchEvent(new Event('input', { bubbles: true }));
  input.dispatchEvent(new Event('change', { bubbles: true }));
  input.dispatchEvent(new Event('blur', { bubbles: true }));
  return input.value;
}
""")

CLICK_ADD_TO_CART = PageScript('click_add_to_cart', """
function(attr) {
  const btn = document.querySelector('[' + attr + '="add"]');
  if (!btn) return false;
  btn.click();
  return true;
}
""")

# Clicks the increment control until it disables or the count is reached.
CLICK_INCREMENT = PageScript('click_increment', """
async function(attr, times, pause) {
  let clicks = 0;
  for (let i = 0; i < times; i++) {
    const btn = document.querySelector('[' + attr + '="increment"]');
    if (!btn || btn.disabled || btn.getAttribute('aria-disabled') === 'true') break;
    btn.click();
    clicks++;
    await new Promise(function(resolve) { setTimeout(resolve, pause); });
  }
  return clicks;
}
""")

# Validation messages, current input value and visible text after a probe.
CART_FEEDBACK = PageScript('cart_feedback', """
function(attr) {
  const input = document.querySelector('[' + attr + '="input"]');
  const messages = [];
  document.querySelectorAll(
    '[role="alert"], [aria-live], [class*="error"], [class*="Error"], [class*="warning"], ' +
    '[class*="Warning"], [class*="limit"], [class*="Limit"], [class*="toast"], [class*="Toast"]'
  ).forEach(function(el) {
    const text = (el.textContent || '').trim();
    if (text && text.length < 300) messages.push(text);
  });
  if (input && input.validationMessage) messages.push(input.validationMessage);
  return {
    inputValue: input ? input.value : null,
    messages: messages,
    text: document.body ? (document.body.innerText || '').slice(0, 20000) : ''
  };
}
""")


SCRIPTS: Dict[str, PageScript] = {
    script.name: script for script in (
        PAGE_SNAPSHOT,
        DISMISS_AGE_GATE,
        SCROLL,
        SELECTOR_STATE,
        CLICK_SELECTOR,
        TYPE_INTO,
        CART_CONTROLS,
        SET_QUANTITY,
        CLICK_ADD_TO_CART,
        CLICK_INCREMENT,
        CART_FEEDBACK,
    )
}
