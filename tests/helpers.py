"""In-process Câmara API served through ``httpx.MockTransport`` plus row builders."""

from __future__ import annotations

import re
from typing import Any, Optional

import httpx


def deputy(code: int, party: str = "PT", state: str = "SP", **extra: Any) -> dict[str, Any]:
    row = {
        "id": code,
        "nome": f"Deputado {code}",
        "siglaPartido": party,
        "siglaUf": state,
        "idLegislatura": 57,
        "urlFoto": f"https://www.camara.leg.br/internet/deputado/bandep/{code}.jpg",
    }
    row.update(extra)
    return row


def expense(doc: int, day: str = "2024-03-10", value: float = 100.0, **extra: Any) -> dict[str, Any]:
    row = {
        "ano": int(day[:4]),
        "mes": int(day[5:7]),
        "tipoDespesa": "COMBUSTÍVEIS E LUBRIFICANTES.",
        "codDocumento": doc,
        "tipoDocumento": "Nota Fiscal",
        "codTipoDocumento": 0,
        "dataDocumento": day,
        "numDocumento": str(doc),
        "valorDocumento": value,
        "urlDocumento": None,
        "nomeFornecedor": "POSTO ESTRELA",
        "cnpjCpfFornecedor": "12345678000199",
        "valorLiquido": value,
        "valorGlosa": 0,
        "numRessarcimento": "",
        "codLote": 1,
        "parcela": 0,
    }
    row.update(extra)
    return row


class FakeCamara:
    """Paginates like the real API (``pagina``/``itens``) and records every call."""

    def __init__(
        self,
        deputies: list[dict[str, Any]],
        expenses: Optional[dict[str, list[dict[str, Any]]]] = None,
        speeches: Optional[dict[str, list[dict[str, Any]]]] = None,
        fail: tuple[str, ...] = (),
        fail_months: tuple[tuple[int, int], ...] = (),
    ) -> None:
        self.deputies = deputies
        self.expenses = expenses or {}
        self.speeches = speeches or {}
        self.fail = set(fail)
        self.fail_months = {(str(y), str(m)) for y, m in fail_months}
        self.calls: list[tuple[str, dict[str, str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params)
        self.calls.append((path, params))

        m = re.search(r"/deputados/(\d+)/(despesas|discursos)$", path)
        if m:
            code, kind = m.groups()
            if code in self.fail:
                return httpx.Response(500)
            if (params.get("ano"), params.get("mes")) in self.fail_months:
                return httpx.Response(503)
            source = self.expenses if kind == "despesas" else self.speeches
            rows = source.get(code, [])
            if kind == "despesas" and "ano" in params:
                rows = [r for r in rows if str(r.get("ano")) == params["ano"]]
            if kind == "despesas" and "mes" in params:
                rows = [r for r in rows if str(r.get("mes")) == params["mes"]]
            return self.page(rows, params)

        m = re.search(r"/deputados/(\d+)$", path)
        if m:
            for d in self.deputies:
                if str(d["id"]) == m.group(1):
                    return httpx.Response(200, json={"dados": {"id": d["id"], "ultimoStatus": d}})
            return httpx.Response(404, json={"status": 404})

        if path.endswith("/deputados"):
            return self.page(self.deputies, params)
        return httpx.Response(404)

    @staticmethod
    def page(rows: list[dict[str, Any]], params: dict[str, str]) -> httpx.Response:
        page = int(params.get("pagina", 1))
        size = int(params.get("itens", 100))
        chunk = rows[(page - 1) * size : page * size]
        return httpx.Response(200, json={"dados": chunk, "links": []})

    def count(self, suffix: str) -> int:
        return sum(1 for path, _ in self.calls if path.endswith(suffix))

