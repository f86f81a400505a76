"""
Locating the record list inside the payload shapes both APIs return.

The Senado API is an XML service with a JSON rendering, so the same list can
sit under different wrappers depending on the endpoint version, and a list of
one element often collapses into a bare object. Matchers are tried in order;
when none applies, ``scan_for_list`` looks for the first list-valued property
up to three levels deep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShapeMatcher:
    name: str
    path: tuple[str, ...]

    def match(self, payload: Any) -> Optional[list[Any]]:
        node = payload
        for key in self.path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return as_list(node)


def as_list(node: Any) -> Optional[list[Any]]:
    if isinstance(node, list):
        return node
    if isinstance(node, dict):
        return [node]
    return None


def scan_for_list(payload: Any, max_depth: int = 3) -> Optional[list[Any]]:
    """Breadth-first search for the first non-empty list of objects."""
    level: list[Any] = [payload]
    for _ in range(max_depth):
        nxt: list[Any] = []
        for node in level:
            if not isinstance(node, dict):
                continue
            for value in node.values():
                if isinstance(value, list) and value and isinstance(value[0], dict):
                    return value
                if isinstance(value, dict):
                    nxt.append(value)
        level = nxt
    return None


def find_items(
    payload: Any,
    matchers: Sequence[ShapeMatcher],
    *,
    fallback: bool = True,
    label: str = "payload",
) -> list[Any]:
    if isinstance(payload, list):
        return payload
    for m in matchers:
        items = m.match(payload)
        if items is not None:
            logger.debug("%s: matched shape %s (%d items)", label, m.name, len(items))
            return items
    if fallback:
        items = scan_for_list(payload)
        if items is not None:
            logger.warning(
                "%s: no known shape matched, using first nested list (%d items)",
                label,
                len(items),
            )
            return items
    logger.warning("%s: no items found", label)
    return []


def dig(obj: Any, *paths: str, default: Any = None) -> Any:
    """First non-empty value among dotted ``paths`` (``"a.b.c"``)."""
    for path in paths:
        node = obj
        for key in path.split("."):
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if node is not None and node != "":
            return node
    return default


CAMARA_LIST = (ShapeMatcher("dados", ("dados",)),)

LIDERANCAS = (
    ShapeMatcher("ListaLideranca.Liderancas.Lideranca", ("ListaLideranca", "Liderancas", "Lideranca")),
    ShapeMatcher("Liderancas.Lideranca", ("Liderancas", "Lideranca")),
    ShapeMatcher("Lista.Liderancas", ("Lista", "Liderancas")),
)

TIPOS = (
    ShapeMatcher("ListaTipos.Tipos.Tipo", ("ListaTipos", "Tipos", "Tipo")),
    ShapeMatcher("Tipos.Tipo", ("Tipos", "Tipo")),
)
