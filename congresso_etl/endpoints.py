from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import quote


@dataclass(frozen=True)
class Endpoint:
    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    house: str = "camara"

    def with_params(self, **extra: Any) -> dict[str, Any]:
        params = dict(self.params)
        params.update({k: v for k, v in extra.items() if v is not None})
        return params


_placeholder_re = re.compile(r"\{(\w+)\}")


def fill_path(template: str, **values: Any) -> str:
    """Substitute ``{name}`` placeholders with URL-encoded values."""

    def repl(m: re.Match[str]) -> str:
        key = m.group(1)
        if key not in values:
            raise KeyError(f"missing path parameter: {key}")
        return quote(str(values[key]), safe="")

    return _placeholder_re.sub(repl, template)


# Câmara dos Deputados
DEPUTADOS = Endpoint(
    "/deputados",
    {"ordem": "ASC", "ordenarPor": "nome"},
)
DEPUTADO = Endpoint("/deputados/{codigo}")
DESPESAS = Endpoint(
    "/deputados/{codigo}/despesas",
    {"ordem": "ASC", "ordenarPor": "numDocumento"},
)
DISCURSOS = Endpoint(
    "/deputados/{codigo}/discursos",
    {"ordem": "DESC", "ordenarPor": "dataHoraInicio"},
)

# Senado Federal
LIDERANCAS = Endpoint("/composicao/lideranca", {"v": 1, "format": "json"}, "senado")
TIPOS_LIDERANCA = Endpoint(
    "/composicao/lideranca/tipos", {"v": 1, "format": "json"}, "senado"
)
TIPOS_UNIDADE = Endpoint(
    "/composicao/lideranca/tipos-unidade", {"v": 1, "format": "json"}, "senado"
)
TIPOS_CARGO = Endpoint(
    "/composicao/lideranca/tipos-cargo", {"v": 1, "format": "json"}, "senado"
)
