"""
Page-context scripts and page-state capture.

Every script is a ``(arg) => ...`` function evaluated by the tab
collaborator; values travel through ``arg`` and are never interpolated
into script source.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from browser.host import BrowserTab

logger = structlog.get_logger()

INDEX_ATTRIBUTE = "data-pilot-index"

FILL_FIELD_SCRIPT = """({formSelector, name, value}) => {
  const field = document.querySelector(formSelector + ' [name="' + CSS.escape(name) + '"]');
  if (!field) return {ok: false, error: 'Field not found: ' + name};
  field.focus();
  field.value = value;
  field.dispatchEvent(new Event('input', {bubbles: true}));
  field.dispatchEvent(new Event('change', {bubbles: true}));
  return {ok: true};
}"""

SUBMIT_FORM_SCRIPT = """({formSelector}) => {
  const form = document.querySelector(formSelector);
  if (!form) return {ok: false, error: 'Form not found: ' + formSelector};
  const button = form.querySelector('input[type="submit"], button[type="submit"], button:not([type])');
  if (button) {
    button.click();
    return {ok: true, method: 'button'};
  }
  if (typeof form.requestSubmit === 'function') {
    form.requestSubmit();
  } else {
    form.submit();
  }
  return {ok: true, method: 'form'};
}"""

INTERACTIVE_ELEMENTS_SCRIPT = """(attr) => {
  const nodes = Array.from(document.querySelectorAll(
    'button, a, input, select, textarea, [role="button"], [role="link"]'
  ));
  return nodes.map((el, index) => {
    el.setAttribute(attr, String(index));
    return {
      index: index,
      tag: el.tagName.toLowerCase(),
      id: el.id || '',
      classes: Array.from(el.classList),
      text: (el.textContent || '').trim().slice(0, 100),
      ariaLabel: el.getAttribute('aria-label') || '',
      placeholder: el.getAttribute('placeholder') || '',
      type: el.getAttribute('type') || '',
      role: el.getAttribute('role') || ''
    };
  });
}"""

CLICK_SCRIPT = """(selector) => {
  const el = document.querySelector(selector);
  if (!el) {
    return {
      found: false,
      buttons: document.querySelectorAll('button, [role="button"]').length,
      links: document.querySelectorAll('a').length
    };
  }
  el.scrollIntoView({block: 'center'});
  el.click();
  return {found: true};
}"""

TYPE_SCRIPT = """({selector, value}) => {
  const el = document.querySelector(selector);
  if (!el) return {found: false};
  el.focus();
  el.value = value;
  for (const type of ['input', 'change', 'blur']) {
    el.dispatchEvent(new Event(type, {bubbles: true}));
  }
  return {found: true};
}"""

PRESS_SCRIPT = """({key}) => {
  const target = document.activeElement || document.body;
  for (const type of ['keydown', 'keypress', 'keyup']) {
    target.dispatchEvent(new KeyboardEvent(type, {key: key, bubbles: true, cancelable: true}));
  }
  if (key === 'Enter' && target.form) {
    if (typeof target.form.requestSubmit === 'function') {
      target.form.requestSubmit();
    } else {
      target.form.submit();
    }
  }
  return {ok: true};
}"""

READY_STATE_SCRIPT = "() => document.readyState"

EXTRACT_SCRIPT = """() => {
  const nodes = Array.from(document.querySelectorAll(
    'h1, h2, h3, [class*="title"], [class*="headline"], [data-testid*="title"]'
  ));
  const texts = [];
  for (const node of nodes) {
    const text = (node.textContent || '').trim().replace(/\\s+/g, ' ');
    if (text && text.length < 200 && !texts.includes(text)) texts.push(text);
    if (texts.length >= 3) break;
  }
  return texts.join(' | ');
}"""


_CONSENT_WORDS = ("cookie", "consent", "accept all", "reject all")
_UTILITY_CLASS = re.compile(r"^(mr|ml|mt|mb|p[trblxy]?|text|bg|w|h)-")
_SCRIPT_TAG = re.compile(r"<script[^>]*>.*?</script>|</?\s*script[^>]*>", re.IGNORECASE | re.DOTALL)


@dataclass
class InteractiveElement:
    tag: str
    selector: str
    label: str
    text: str = ""
    is_consent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "selector": self.selector,
            "label": self.label,
            "text": self.text,
        }


@dataclass
class PageState:
    """Snapshot handed to the oracle each adaptive step."""
    title: str = ""
    url: str = ""
    elements: list[InteractiveElement] = field(default_factory=list)


def sanitize_input(value: Optional[str]) -> str:
    """Strip script tags from text typed into pages."""
    if not value:
        return ""
    return _SCRIPT_TAG.sub("", value)


def _index_selector(index: int) -> str:
    return f'[{INDEX_ATTRIBUTE}="{index}"]'


def synthesize_selector(raw: dict[str, Any]) -> Optional[InteractiveElement]:
    """
    Build a stable selector for one raw element descriptor.

    Priority: id, consent-button index, type attribute, role, semantic
    class, aria-label, index for short-text elements. Elements that would
    only get a bare tag selector, or that carry no label, are dropped.
    """
    tag = raw.get("tag", "")
    text = raw.get("text", "") or ""
    aria = raw.get("ariaLabel", "") or ""
    classes = raw.get("classes") or []
    element_type = raw.get("type", "")
    role = raw.get("role", "")
    index = raw.get("index", 0)
    is_consent = any(word in text.lower() for word in _CONSENT_WORDS)

    if raw.get("id"):
        selector = f"#{raw['id']}"
    elif is_consent and tag == "button":
        selector = _index_selector(index)
    elif element_type and tag in ("button", "input"):
        selector = f'{tag}[type="{element_type}"]'
    elif role:
        selector = f'{tag}[role="{role}"]'
    elif classes:
        good = next(
            (c for c in classes if "_" not in c and not _UTILITY_CLASS.match(c) and len(c) < 30),
            classes[0],
        )
        selector = f"{tag}.{good}"
    elif aria and len(aria) < 50:
        escaped = aria.replace('"', '\\"')
        selector = f'{tag}[aria-label="{escaped}"]'
    elif text and len(text) < 50:
        selector = _index_selector(index)
    else:
        return None

    label = (aria or raw.get("placeholder", "") or text)[:100]
    if not label:
        return None
    return InteractiveElement(tag=tag, selector=selector, label=label, text=text[:100], is_consent=is_consent)


def rank_elements(raw_elements: list[dict[str, Any]], limit: int = 18) -> list[InteractiveElement]:
    """Filter, put consent controls first, and cap the list."""
    elements = [e for e in (synthesize_selector(r) for r in raw_elements) if e is not None]
    elements.sort(key=lambda e: not e.is_consent)
    return elements[:limit]


async def capture_page_state(tab: BrowserTab, limit: int = 18) -> PageState:
    """Title, URL and ranked interactive elements; degraded to URL-only on failure."""
    try:
        title = await tab.title()
        raw = await tab.run_script(INTERACTIVE_ELEMENTS_SCRIPT, INDEX_ATTRIBUTE) or []
        return PageState(title=title, url=tab.url, elements=rank_elements(raw, limit))
    except Exception as e:
        logger.warning("page_state_capture_failed", tab_id=tab.tab_id, error=str(e))
        return PageState(url=tab.url)
