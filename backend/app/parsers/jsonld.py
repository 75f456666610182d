"""schema.org JSON-LD extraction for dealer vehicle detail pages."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

from ._listing_common import to_text

JsonNode = Dict[str, Any]

VEHICLE_TYPES = ("vehicle", "car", "product")


def _is_ld_json(value: Optional[str]) -> bool:
    return bool(value) and "ld+json" in value.lower()


def extract_blocks(html: str) -> List[Any]:
    """Return every parsed ``application/ld+json`` payload in document order.

    A block with invalid JSON is skipped; the rest of the page still counts.
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    blocks: List[Any] = []
    for tag in soup.find_all("script", type=_is_ld_json):
        raw = (tag.string or tag.get_text() or "").strip()
        if not raw:
            continue
        try:
            blocks.append(json.loads(raw, strict=False))
        except json.JSONDecodeError:
            continue
    return blocks


def flatten(payloads: Iterable[Any]) -> List[JsonNode]:
    nodes: List[JsonNode] = []

    def visit(value: Any) -> None:
        if isinstance(value, list):
            for item in value:
                visit(item)
            return
        if not isinstance(value, dict):
            return
        nodes.append(value)
        graph = value.get("@graph")
        if isinstance(graph, list):
            visit(graph)

    for payload in payloads:
        visit(payload)
    return nodes


def node_types(node: JsonNode) -> List[str]:
    raw = node.get("@type")
    values = raw if isinstance(raw, list) else [raw]
    return [value.lower() for value in values if isinstance(value, str)]


def is_type(node: JsonNode, names: Sequence[str]) -> bool:
    """Case-insensitive substring match, so ``MotorVehicle`` and ``schema:Car`` count."""
    wanted = [name.lower() for name in names]
    return any(name in value for value in node_types(node) for name in wanted)


def item_list_urls(nodes: Iterable[JsonNode]) -> List[str]:
    """URLs advertised by ``ItemList`` nodes, either directly or via ``item``."""
    urls: List[str] = []
    for node in nodes:
        if not is_type(node, ("ItemList",)):
            continue
        elements = node.get("itemListElement")
        if isinstance(elements, dict):
            elements = [elements]
        if not isinstance(elements, list):
            continue
        for element in elements:
            if isinstance(element, str):
                urls.append(element)
                continue
            if not isinstance(element, dict):
                continue
            item = element.get("item")
            candidate = element.get("url")
            if isinstance(item, dict):
                candidate = candidate or item.get("url") or item.get("@id")
            elif isinstance(item, str):
                candidate = candidate or item
            text = to_text(candidate)
            if text:
                urls.append(text)
    return urls


def pick_offer(node: JsonNode) -> Optional[JsonNode]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = next((offer for offer in offers if isinstance(offer, dict)), None)
    return offers if isinstance(offers, dict) else None


def _has(node: JsonNode, *names: str) -> bool:
    for name in names:
        value = node.get(name)
        if value not in (None, "", [], {}):
            return True
    return False


def score_candidate(node: JsonNode) -> int:
    score = 0
    offer = pick_offer(node)
    if offer is not None:
        price_spec = offer.get("priceSpecification")
        spec_price = price_spec.get("price") if isinstance(price_spec, dict) else None
        if offer.get("price") not in (None, "") or spec_price not in (None, ""):
            score += 2
    if _has(node, "brand", "make", "manufacturer"):
        score += 1
    if _has(node, "model", "vehicleModel"):
        score += 1
    if _has(node, "image"):
        score += 1
    return score


def select_vehicle_node(html: str) -> Optional[JsonNode]:
    """Pick the best Vehicle/Car/Product node on a page.

    Ties keep the earliest node in document order.
    """
    best: Optional[JsonNode] = None
    best_score = -1
    for node in flatten(extract_blocks(html)):
        if not is_type(node, VEHICLE_TYPES):
            continue
        score = score_candidate(node)
        if score > best_score:
            best, best_score = node, score
    return best


__all__ = [
    "JsonNode",
    "extract_blocks",
    "flatten",
    "is_type",
    "item_list_urls",
    "pick_offer",
    "score_candidate",
    "select_vehicle_node",
]
