"""
LLM backed shopping helpers

Cart recommendations and the guide chat both send a catalog summary to an
OpenAI compatible chat-completions endpoint and pick product ids out of the
free-text answer. Both degrade to an empty / fallback answer whenever the
model is not configured or the call fails.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI, OpenAIError

from repositories import ProductRepository
from schemas import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT = 20.0

FALLBACK_REPLY = (
    "I'm sorry, the guide is temporarily unavailable. "
    "Please try again later or browse our catalog."
)

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_PRODUCT_IDS_LINE = re.compile(r"\n?PRODUCT_IDS:[ \t]*([^\n]*)\s*$", re.IGNORECASE)


class ChatClient:
    """Thin wrapper over the OpenAI chat-completions API."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT):
        self.model = model
        self.timeout = timeout
        self._client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    @classmethod
    def from_env(cls) -> Optional["ChatClient"]:
        api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL),
            timeout=_timeout_from_env(),
        )

    def complete(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
        )
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise ValueError(f"Unexpected chat completion response: {response!r}") from exc
        if content is not None and not isinstance(content, str):
            raise ValueError(f"Unexpected chat completion content: {content!r}")
        return (content or "").strip()


def _timeout_from_env() -> float:
    raw = os.getenv("OPENAI_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid OPENAI_TIMEOUT %r, using %.0fs", raw, DEFAULT_TIMEOUT)
        return DEFAULT_TIMEOUT
    return timeout if timeout > 0 else DEFAULT_TIMEOUT


def parse_id_array(content: str) -> List[str]:
    """Return the string ids of the first JSON array found in ``content``."""
    match = _JSON_ARRAY.search(content or "")
    if not match:
        return []
    try:
        ids = json.loads(match.group(0))
    except ValueError:
        return []
    if not isinstance(ids, list):
        return []
    return [i for i in ids if isinstance(i, str) and i]


def split_product_ids(reply: str):
    """Split a trailing ``PRODUCT_IDS: a,b`` line off a guide reply.

    Returns ``(clean_reply, ids)``.
    """
    match = _PRODUCT_IDS_LINE.search(reply)
    if not match:
        return reply.strip(), []
    clean = reply[:match.start()].strip()
    ids = [part.strip() for part in match.group(1).split(",") if part.strip()]
    return clean, ids


def _in_order(products: List[Dict[str, Any]], ids: Sequence[str]) -> List[Dict[str, Any]]:
    rank = {pid: i for i, pid in enumerate(ids)}
    return sorted(products, key=lambda p: rank.get(p["_id"], len(rank)))


def _category_name(product: Dict[str, Any]) -> str:
    return (product.get("category") or {}).get("name") or "N/A"


class RecommendationService:
    def __init__(self, products: ProductRepository, client: Optional[ChatClient]):
        self.products = products
        self.client = client

    def _prompt(self, cart: List[Dict[str, Any]], catalog: List[Dict[str, Any]]) -> str:
        cart_summary = ", ".join(f"{p['title']} ({_category_name(p)})" for p in cart)
        catalog_lines = "\n".join(
            f'- id: "{p["_id"]}", title: "{p["title"]}", category: "{_category_name(p)}"' for p in catalog
        )
        return (
            "You are a ski and winter sports shop assistant. "
            f"The customer has these items in their cart: {cart_summary}.\n\n"
            f"Our full catalog (id, title, category):\n{catalog_lines}\n\n"
            "Suggest 4 to 6 product IDs from our catalog that would complement their purchase "
            "(e.g. accessories, matching gear, things often bought together). "
            "Do NOT suggest products already in their cart. "
            'Return ONLY a JSON array of product ID strings, nothing else. Example: ["id1","id2","id3"]'
        )

    def recommended_ids(self, cart_ids: List[str]) -> List[str]:
        if self.client is None or not cart_ids:
            return []
        catalog = self.products.list({}, [("title", 1)])
        cart = [p for p in catalog if p["_id"] in cart_ids]
        try:
            content = self.client.complete([{"role": "user", "content": self._prompt(cart, catalog)}], max_tokens=300)
        except (OpenAIError, ValueError) as exc:
            logger.warning("Recommendation request failed: %s", exc)
            return []
        return parse_id_array(content)

    def recommended_products(self, cart_ids: List[str]) -> List[Dict[str, Any]]:
        ids = [i for i in self.recommended_ids(cart_ids) if i not in cart_ids]
        if not ids:
            return []
        return _in_order(self.products.get_by_ids(ids), ids)


class GuideChatService:
    def __init__(self, products: ProductRepository, client: Optional[ChatClient]):
        self.products = products
        self.client = client

    @staticmethod
    def system_prompt(catalog: List[Dict[str, Any]]) -> str:
        if catalog:
            lines = []
            for p in catalog:
                line = f'- id: "{p["_id"]}", title: "{p["title"]}", category: "{_category_name(p)}", price: {p["price"]}'
                if p.get("size"):
                    line += f", size: {p['size']}"
                if p.get("length"):
                    line += f", length: {p['length']}cm"
                if p.get("brand"):
                    line += f", brand: {p['brand']}"
                lines.append(line)
            catalog_text = "\n".join(lines)
        else:
            catalog_text = "Our catalog is currently empty."

        return (
            "You are a friendly virtual ski guide for a winter sports e-commerce shop. "
            "You help customers choose the right equipment: skis, boots, clothing, accessories. "
            "You have access to our REAL product catalog below. Use it to recommend specific products "
            "when the user asks for suggestions.\n\n"
            f"Our catalog (use these exact IDs when recommending):\n{catalog_text}\n\n"
            "Rules:\n"
            "- When the user asks for a product recommendation, pick 1-4 products from the catalog that best "
            "match the conversation and mention them in your reply by name.\n"
            "- Keep replies concise (2-5 sentences) unless they ask for detail. Be warm and professional.\n"
            "- At the very end of your message, on a new line, output exactly: PRODUCT_IDS: id1,id2,id3 "
            "(the _id values from the catalog, comma-separated, no spaces). If you are not recommending any "
            "specific products this turn, write only: PRODUCT_IDS:\n"
            "- Do not make up product names or IDs, only use IDs from the catalog above."
        )

    def reply(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        fallback = {"reply": FALLBACK_REPLY, "products": []}
        if self.client is None:
            return fallback

        conversation = [
            {"role": m.role, "content": m.content.strip()}
            for m in messages
            if m.role in ("user", "assistant") and m.content.strip()
        ]
        if not conversation:
            return fallback

        catalog = self.products.list({}, [("title", 1)])
        try:
            raw = self.client.complete(
                [{"role": "system", "content": self.system_prompt(catalog)}] + conversation,
                max_tokens=400,
            )
        except (OpenAIError, ValueError) as exc:
            logger.warning("Guide chat request failed: %s", exc)
            return fallback

        text, ids = split_product_ids(raw or FALLBACK_REPLY)
        products = _in_order(self.products.get_by_ids(ids), ids) if ids else []
        return {"reply": text, "products": products}
