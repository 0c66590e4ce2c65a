"""
Render step messages into LINE message objects for one friend.

Pure functions: no database or network access. Text and flex content get
friend tokens ([UID], [LINE_NAME], [LINE_NAME_SAN]) and product fields
({product_name}, ...) substituted; flex payloads are sanitized and wrapped
into a full ``{"type": "flex", ...}`` message.
"""

from __future__ import annotations

import copy
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from app.constants.enrollment import MessageType

DEFAULT_NAME = "あなた"
DEFAULT_FLEX_ALT_TEXT = "お知らせ"
DEFAULT_CURRENCY = "JPY"
DEFAULT_TAX_RATE = 0.1

UID_TOKEN = "[UID]"
LINE_NAME_TOKEN = "[LINE_NAME]"
LINE_NAME_SAN_TOKEN = "[LINE_NAME_SAN]"

# Form links written before the [UID] token existed
LEGACY_FORM_LINK = re.compile(
    r"https?://[^/\s]+/form/[a-f0-9\-]+(?:\?[^?\s]*)?", re.IGNORECASE
)

# Keys the LINE API rejects per flex component type
INVALID_FLEX_KEYS: dict[str, frozenset[str]] = {
    "text": frozenset(
        {
            "backgroundColor",
            "padding",
            "borderRadius",
            "borderWidth",
            "borderColor",
            "className",
        }
    ),
    "image": frozenset({"className"}),
    "box": frozenset({"className"}),
    "button": frozenset({"className"}),
}

_CURRENCY_FORMATS = {
    "JPY": ("¥", 0),
    "USD": ("$", 2),
    "EUR": ("€", 2),
}


@dataclass(frozen=True)
class ProductContext:
    name: str
    price: int | float
    url: Optional[str] = None
    currency: str = DEFAULT_CURRENCY
    tax_rate: float = DEFAULT_TAX_RATE


@dataclass(frozen=True)
class RenderContext:
    short_uid: Optional[str] = None
    display_name: Optional[str] = None
    product: Optional[ProductContext] = None
    extra_fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def line_name(self) -> str:
        name = (self.display_name or "").strip()
        return name or DEFAULT_NAME

    @property
    def line_name_san(self) -> str:
        name = self.line_name
        return DEFAULT_NAME if name == DEFAULT_NAME else f"{name}さん"


def format_number(value: int | float) -> str:
    """1000 -> '1,000' (drops a zero fraction)."""
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,}"


def format_currency(value: int | float, currency: str = DEFAULT_CURRENCY) -> str:
    code = (currency or DEFAULT_CURRENCY).upper()
    symbol, decimals = _CURRENCY_FORMATS.get(code, ("", 2))
    amount = f"{value:,.{decimals}f}"
    return f"{symbol}{amount}" if symbol else f"{amount} {code}"


def product_fields(product: Optional[ProductContext]) -> dict[str, str]:
    """Token -> value map for product fields; empty without a product."""
    if product is None:
        return {}
    price = format_number(product.price)
    tax_included = math.floor(product.price * (1 + product.tax_rate))
    return {
        "{product_name}": product.name,
        "{product_price}": price,
        "{product_name_price}": f"{product.name} - {price}円",
        "{product_url}": product.url or "",
        "{product_price_tax}": format_currency(tax_included, product.currency),
        "{product_currency}": (product.currency or DEFAULT_CURRENCY).upper(),
    }


def add_uid_to_form_links(text: str, short_uid: Optional[str]) -> str:
    """
    Replace [UID]; when the text had no [UID] token, append ?uid= to legacy
    form links that do not carry one yet.
    """
    if not short_uid:
        return text
    result = text.replace(UID_TOKEN, short_uid)
    if result != text:
        return result

    def _append(match: re.Match) -> str:
        url = match.group(0)
        parts = urlsplit(url)
        query = parse_qs(parts.query, keep_blank_values=True)
        if "uid" in query:
            return url
        pairs = [(k, v) for k, values in query.items() for v in values]
        pairs.append(("uid", short_uid))
        return urlunsplit(parts._replace(query=urlencode(pairs)))

    return LEGACY_FORM_LINK.sub(_append, result)


def replace_tokens(text: str, context: RenderContext, legacy_links: bool = True) -> str:
    if legacy_links:
        text = add_uid_to_form_links(text, context.short_uid)
    elif context.short_uid:
        text = text.replace(UID_TOKEN, context.short_uid)
    # _SAN first: [LINE_NAME] is a prefix of [LINE_NAME_SAN]
    text = text.replace(LINE_NAME_SAN_TOKEN, context.line_name_san)
    text = text.replace(LINE_NAME_TOKEN, context.line_name)
    for token, value in product_fields(context.product).items():
        text = text.replace(token, value)
    for token, value in context.extra_fields.items():
        text = text.replace(token, value)
    return text


def replace_tokens_deep(node: Any, context: RenderContext) -> Any:
    if isinstance(node, str):
        return replace_tokens(node, context, legacy_links=False)
    if isinstance(node, list):
        return [replace_tokens_deep(item, context) for item in node]
    if isinstance(node, dict):
        return {key: replace_tokens_deep(value, context) for key, value in node.items()}
    return node


def sanitize_flex(node: Any) -> Any:
    """Drop keys LINE rejects for the component type, recursively."""
    if isinstance(node, list):
        return [sanitize_flex(item) for item in node]
    if isinstance(node, dict):
        invalid = INVALID_FLEX_KEYS.get(node.get("type"), frozenset())
        return {k: sanitize_flex(v) for k, v in node.items() if k not in invalid}
    return node


def normalize_flex(payload: Any, alt_text: Optional[str] = None) -> Optional[dict]:
    """
    Accept a full flex message, a bare bubble/carousel, or a wrapper whose
    contents is a bubble/carousel; return a LINE flex message or None.
    """
    if not isinstance(payload, dict):
        return None

    def _alt(value: Any) -> str:
        for candidate in (alt_text, value):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
        return DEFAULT_FLEX_ALT_TEXT

    contents = payload.get("contents")
    if payload.get("type") == "flex" and contents:
        message = {
            "type": "flex",
            "altText": _alt(payload.get("altText")),
            "contents": sanitize_flex(contents),
        }
    elif payload.get("type") in ("bubble", "carousel"):
        message = {
            "type": "flex",
            "altText": _alt(None),
            "contents": sanitize_flex(payload),
        }
    elif isinstance(contents, dict) and contents.get("type") in ("bubble", "carousel"):
        message = {
            "type": "flex",
            "altText": _alt(payload.get("altText")),
            "contents": sanitize_flex(contents),
        }
    else:
        return None

    background = ((payload.get("styles") or {}).get("body") or {}).get("backgroundColor")
    body = message["contents"].get("body")
    if background and message["contents"].get("type") == "bubble" and isinstance(body, dict):
        body["backgroundColor"] = background
    return message


def _get(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


def render_message(message: Any, context: RenderContext) -> Optional[dict]:
    """One StepMessage (model or dict) -> one LINE message dict, or None if empty."""
    message_type = _get(message, "message_type")
    if message_type == MessageType.TEXT:
        content = _get(message, "content")
        if not content:
            return None
        return {"type": "text", "text": replace_tokens(content, context)}
    if message_type == MessageType.IMAGE:
        url = _get(message, "media_url")
        if not url:
            return None
        return {"type": "image", "originalContentUrl": url, "previewImageUrl": url}
    if message_type == MessageType.FLEX:
        payload = _get(message, "flex_content")
        if not payload:
            return None
        payload = replace_tokens_deep(copy.deepcopy(payload), context)
        alt_text = _get(message, "alt_text")
        if alt_text:
            alt_text = replace_tokens(alt_text, context, legacy_links=False)
        return normalize_flex(payload, alt_text=alt_text)
    raise ValueError(f"Unsupported message type: {message_type}")


def render(messages: Iterable[Any], context: RenderContext) -> list[dict]:
    """Render a step's messages in order, skipping ones with no content."""
    rendered = []
    for message in messages:
        result = render_message(message, context)
        if result is not None:
            rendered.append(result)
    return rendered
