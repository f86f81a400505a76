from __future__ import annotations

import pytest

from congresso_etl.entities import (
    EntityBasic,
    RosterExtractor,
    apply_filters,
    deduplicate_entities,
    entity_from_camara,
)
from congresso_etl.errors import NoEntitiesFoundError

from tests.helpers import FakeCamara, deputy


class TestDeduplication:
    def test_later_row_with_civil_name_wins(self):
        a = EntityBasic(id="1", name="A")
        b = EntityBasic(id="1", name="A", civil_name="Ana Souza")
        out = deduplicate_entities([a, b])
        assert out == [b]

    def test_first_occurrence_kept_when_not_less_complete(self):
        a = EntityBasic(id="1", name="A", civil_name="Ana")
        b = EntityBasic(id="1", name="A outra")
        assert deduplicate_entities([a, b]) == [a]

    def test_order_follows_first_appearance(self):
        rows = [EntityBasic(id=i, name=i) for i in ("3", "1", "3", "2")]
        assert [e.id for e in deduplicate_entities(rows)] == ["3", "1", "2"]


class TestFilters:
    def test_limit_applies_after_party_filter(self):
        roster = [
            EntityBasic(id="1", name="a", party="PL"),
            EntityBasic(id="2", name="b", party="PT"),
            EntityBasic(id="3", name="c", party="PL"),
            EntityBasic(id="4", name="d", party="PT"),
            EntityBasic(id="5", name="e", party="PT"),
        ]
        out = apply_filters(roster, party="pt", limit=2)
        assert [e.id for e in out] == ["2", "4"]

    def test_state_filter_is_case_insensitive(self):
        roster = [EntityBasic(id="1", name="a", state="SP"), EntityBasic(id="2", name="b", state="RJ")]
        assert [e.id for e in apply_filters(roster, state="rj")] == ["2"]


def test_entity_from_profile_payload():
    raw = {"id": 204554, "nomeCivil": "FULANO DE TAL", "ultimoStatus": deputy(204554, "PSOL", "RJ")}
    e = entity_from_camara(raw)
    assert e.id == "204554"
    assert e.party == "PSOL"
    assert e.state == "RJ"
    assert e.civil_name == "FULANO DE TAL"
    assert e.photo_url.endswith("204554.jpg")


class TestRosterExtractor:
    @pytest.mark.asyncio
    async def test_roster_deduplicates_across_pages(self, make_api, api_cfg):
        rows = [deputy(1), deputy(2), deputy(2, nomeCivil="DOIS"), deputy(3)]
        fake = FakeCamara(rows)
        async with make_api(fake) as api:
            roster = await RosterExtractor(api).list_entities(57)
        assert [e.id for e in roster] == ["1", "2", "3"]
        assert roster[1].civil_name == "DOIS"
        assert fake.calls[0][1]["idLegislatura"] == "57"

    @pytest.mark.asyncio
    async def test_empty_roster_raises(self, make_api):
        async with make_api(FakeCamara([])) as api:
            with pytest.raises(NoEntitiesFoundError):
                await RosterExtractor(api).list_entities(57)

    @pytest.mark.asyncio
    async def test_fetch_unknown_entity_returns_none(self, make_api):
        async with make_api(FakeCamara([deputy(1)])) as api:
            extractor = RosterExtractor(api)
            assert await extractor.fetch_entity("999") is None
            found = await extractor.fetch_entity("1", 57)
        assert found is not None
        assert found.name == "Deputado 1"
