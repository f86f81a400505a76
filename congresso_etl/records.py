from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Optional, Union


ID_FIELDS = ("id_documento", "id", "codigo")
FALLBACK_FIELDS = (
    ("data_documento", "data_hora_inicio", "data_designacao"),
    ("valor_liquido", "valor_documento"),
    ("nome_fornecedor", "cnpj_cpf_fornecedor", "owner_id"),
    ("num_documento", "parcela"),
)


def content_key(*parts: Any) -> str:
    joined = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:20]


def key_of(doc: dict[str, Any]) -> str:
    """Dedup key of a stored record dict; stable for the same content."""
    for name in ID_FIELDS:
        value = doc.get(name)
        if value not in (None, ""):
            return str(value)
    parts = []
    for group in FALLBACK_FIELDS:
        parts.append(next((doc[k] for k in group if doc.get(k) not in (None, "")), ""))
    return "h:" + content_key(*parts)


@dataclass
class Expense:
    id_documento: str
    owner_id: str
    data_documento: str
    ano: int
    mes: int
    tipo_despesa: str = "OUTROS"
    cod_documento: Optional[str] = None
    tipo_documento: str = ""
    cod_tipo_documento: Optional[str] = None
    num_documento: str = ""
    url_documento: Optional[str] = None
    valor_documento: float = 0.0
    valor_liquido: float = 0.0
    valor_glosa: float = 0.0
    nome_fornecedor: str = ""
    cnpj_cpf_fornecedor: str = ""
    num_ressarcimento: Optional[str] = None
    cod_lote: Optional[str] = None
    parcela: int = 0
    extracted_at: str = ""
    day: Optional[date] = field(default=None, repr=False, compare=False)

    kind = "despesa"

    @property
    def unique_key(self) -> str:
        return self.id_documento

    @property
    def period(self) -> str:
        return str(self.ano)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("day", None)
        return d


@dataclass
class Speech:
    id: str
    owner_id: str
    data_hora_inicio: str
    ano: int
    mes: int
    data_hora_fim: Optional[str] = None
    tipo_discurso: str = ""
    sumario: str = ""
    transcricao: str = ""
    palavras_chave: list[str] = field(default_factory=list)
    fase_evento: str = ""
    tipo_evento: str = ""
    uri_evento: Optional[str] = None
    url_audio: Optional[str] = None
    url_video: Optional[str] = None
    url_texto: Optional[str] = None
    extracted_at: str = ""
    day: Optional[date] = field(default=None, repr=False, compare=False)

    kind = "discurso"

    @property
    def unique_key(self) -> str:
        return self.id

    @property
    def period(self) -> str:
        return str(self.ano)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("day", None)
        return d


@dataclass
class LeadershipRole:
    codigo: str
    owner_id: str
    nome: str = ""
    descricao: str = ""
    tipo_codigo: str = ""
    tipo_descricao: str = ""
    nome_parlamentar: str = ""
    partido: str = ""
    uf: str = ""
    unidade_codigo: str = ""
    unidade_descricao: str = ""
    data_designacao: Optional[str] = None
    extracted_at: str = ""
    day: Optional[date] = field(default=None, repr=False, compare=False)

    kind = "lideranca"

    @property
    def unique_key(self) -> str:
        return self.codigo

    @property
    def period(self) -> str:
        return "atual"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("day", None)
        return d


Record = Union[Expense, Speech, LeadershipRole]
