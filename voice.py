"""
Voice ordering: turn a speech transcript into cart lines.

The transcript and a compact {id, name} menu listing go to a Bedrock model,
which answers with a JSON array of {menuItemId, quantity, notes}. Anything
that cannot be understood yields no items instead of an error.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cart import CartItem

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are an intelligent waiter POS system.
Context: The restaurant menu items are: {menu}.

Task: Extract the customer's order from this speech transcript: "{transcript}".

Rules:
1. Fuzzy match the transcript to the closest menu item names.
2. Extract quantities (default to 1 if not specified).
3. Extract any special notes or modifications (e.g., "no ice", "extra spicy").
4. Return ONLY a valid JSON array of objects with keys: "menuItemId", "quantity" (number), "notes" (string or null).
5. If the user is just chatting or no items match, return an empty JSON array [].
6. Do not include markdown formatting. Just the raw JSON.
"""

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class VoiceOrderParser:
    def __init__(self, model_id: str, region: str = "us-east-1", client=None):
        self.model_id = model_id
        self.region = region
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("bedrock-runtime", region_name=self.region)
        return self._client

    @staticmethod
    def build_prompt(transcript: str, menu_items: List[Dict[str, Any]]) -> str:
        simple_menu = [{"id": m["id"], "name": m["name"]} for m in menu_items]
        return PROMPT_TEMPLATE.format(menu=json.dumps(simple_menu), transcript=transcript)

    def complete(self, prompt: str) -> str:
        response = self.client.converse(
            modelId=self.model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={"maxTokens": 512, "temperature": 0},
        )
        content = response.get("output", {}).get("message", {}).get("content", [])
        return "".join(part.get("text", "") for part in content)

    def parse(self, transcript: str, menu_items: List[Dict[str, Any]]) -> List[CartItem]:
        if not transcript or not transcript.strip() or not menu_items:
            return []
        try:
            text = self.complete(self.build_prompt(transcript.strip(), menu_items))
        except (BotoCoreError, ClientError) as e:
            logger.error("Voice order model call failed: %s", e)
            return []
        return self.match(parse_model_reply(text), menu_items)

    @staticmethod
    def match(extracted: List[Dict[str, Any]], menu_items: List[Dict[str, Any]]) -> List[CartItem]:
        by_id = {m["id"]: m for m in menu_items}
        found: List[CartItem] = []
        for entry in extracted:
            menu_item = by_id.get(entry.get("menuItemId"))
            if not menu_item:
                logger.debug("Skipping unknown menu item %r", entry.get("menuItemId"))
                continue
            notes = entry.get("notes")
            found.append(CartItem(
                menu_item_id=menu_item["id"],
                name=menu_item["name"],
                quantity=_quantity(entry.get("quantity")),
                price=float(menu_item["price"]),
                notes=notes if isinstance(notes, str) and notes else None,
            ))
        return found


def parse_model_reply(text: Optional[str]) -> List[Dict[str, Any]]:
    """Strip code fences and decode; anything but a JSON array of objects is []."""
    if not text:
        return []
    cleaned = _FENCE.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        logger.warning("Voice order reply is not JSON: %.80s", cleaned)
        return []
    if not isinstance(data, list):
        return []
    return [d for d in data if isinstance(d, dict)]


def _quantity(value: Any) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError):
        return 1
    return qty if qty >= 1 else 1
