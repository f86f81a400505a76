from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Iterable, Optional

from . import endpoints
from .client import ApiClient
from .errors import NoEntitiesFoundError
from .shapes import dig


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityBasic:
    id: str
    name: str
    party: str = ""
    state: str = ""
    term: Optional[int] = None
    civil_name: Optional[str] = None
    photo_url: Optional[str] = None
    email: Optional[str] = None

    def completeness(self) -> tuple[bool, int]:
        """Civil name first, then number of populated optional fields."""
        optional = [f.name for f in fields(self) if f.default is None]
        filled = sum(1 for name in optional if getattr(self, name))
        return bool(self.civil_name), filled


def entity_from_camara(raw: dict[str, Any], term: Optional[int] = None) -> Optional[EntityBasic]:
    """Roster rows carry flat fields; profile answers nest them under ``ultimoStatus``."""
    code = dig(raw, "id", "ultimoStatus.id")
    if code in (None, ""):
        return None
    return EntityBasic(
        id=str(code),
        name=str(dig(raw, "nome", "ultimoStatus.nome", "ultimoStatus.nomeEleitoral", default="")),
        party=str(dig(raw, "siglaPartido", "ultimoStatus.siglaPartido", default="")),
        state=str(dig(raw, "siglaUf", "ultimoStatus.siglaUf", default="")),
        term=dig(raw, "idLegislatura", "ultimoStatus.idLegislatura", default=term),
        civil_name=dig(raw, "nomeCivil"),
        photo_url=dig(raw, "urlFoto", "ultimoStatus.urlFoto"),
        email=dig(raw, "email", "ultimoStatus.email", "ultimoStatus.gabinete.email"),
    )


def deduplicate_entities(entities: Iterable[EntityBasic]) -> list[EntityBasic]:
    """Keep the first occurrence of each id unless a later one is more complete."""
    by_id: dict[str, EntityBasic] = {}
    for e in entities:
        current = by_id.get(e.id)
        if current is None:
            by_id[e.id] = e
        elif e.completeness() > current.completeness():
            by_id[e.id] = e
    return list(by_id.values())


def apply_filters(
    entities: Iterable[EntityBasic],
    *,
    party: Optional[str] = None,
    state: Optional[str] = None,
    limit: int = 0,
) -> list[EntityBasic]:
    out = list(entities)
    if party:
        wanted = party.strip().upper()
        out = [e for e in out if e.party.upper() == wanted]
    if state:
        wanted = state.strip().upper()
        out = [e for e in out if e.state.upper() == wanted]
    if limit and limit > 0:
        out = out[:limit]
    return out


class RosterExtractor:
    """Deputy roster for a legislature, plus single-deputy lookup."""

    def __init__(self, api: ApiClient, max_pages: int = 100) -> None:
        self.api = api
        self.max_pages = max_pages

    async def list_entities(
        self,
        term: int,
        *,
        party: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 0,
    ) -> list[EntityBasic]:
        rows, _ = await self.api.get_all_pages(
            endpoints.DEPUTADOS.path,
            endpoints.DEPUTADOS.with_params(idLegislatura=term),
            max_pages=self.max_pages,
            context=f"roster term {term}",
        )

        if not rows:
            raise NoEntitiesFoundError(f"no deputies found for legislature {term}")

        parsed = [e for e in (entity_from_camara(r, term) for r in rows) if e is not None]
        unique = deduplicate_entities(parsed)
        selected = apply_filters(unique, party=party, state=state, limit=limit)
        logger.info(
            "Roster term %d: rows=%d unique=%d selected=%d",
            term,
            len(rows),
            len(unique),
            len(selected),
        )
        return selected

    async def fetch_entity(self, entity_id: str, term: Optional[int] = None) -> Optional[EntityBasic]:
        res = await self.api.fetch(
            endpoints.fill_path(endpoints.DEPUTADO.path, codigo=entity_id),
            context=f"deputy {entity_id}",
        )
        if not res.ok:
            logger.warning("Deputy %s not found (HTTP %d)", entity_id, res.status_code)
            return None
        data = res.data.get("dados") if isinstance(res.data, dict) else None
        if not isinstance(data, dict):
            return None
        return entity_from_camara(data, term)
