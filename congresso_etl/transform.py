from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

import pandas as pd
from bs4 import BeautifulSoup

from . import shapes
from .config import safe_float, safe_int
from .records import Expense, LeadershipRole, Record, Speech, content_key
from .shapes import ShapeMatcher, dig


logger = logging.getLogger(__name__)


# -----------------------------
# Dates and text
# -----------------------------
_iso_re = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")
_br_re = re.compile(r"^(\d{2})/(\d{2})/(\d{4})(?:\s.*)?$")
_compact_re = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def parse_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None

    for rx, order in ((_iso_re, "ymd"), (_br_re, "dmy"), (_compact_re, "ymd")):
        m = rx.match(s)
        if not m:
            continue
        a, b, c = (int(g) for g in m.groups())
        y, mo, d = (a, b, c) if order == "ymd" else (c, b, a)
        try:
            return date(y, mo, d)
        except ValueError:
            return None

    ts = pd.to_datetime(s, errors="coerce", dayfirst=True)
    if ts is None or pd.isna(ts):
        return None
    return ts.date()


def normalize_date(value: Any) -> Any:
    """ISO ``YYYY-MM-DD`` when the value parses; otherwise the value unchanged."""
    d = parse_date(value)
    if d is not None:
        return d.isoformat()
    if value not in (None, ""):
        logger.warning("Unrecognized date format, keeping as is: %r", value)
    return value


def html_to_text(raw: Any) -> str:
    if raw is None:
        return ""
    text = str(raw)
    if "<" in text and ">" in text:
        soup = BeautifulSoup(text, "lxml")
        for tag in soup(["script", "style"]):
            tag.decompose()
        text = soup.get_text(separator="\n")
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def split_keywords(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        parts = str(value).split(",")
    return [p.strip() for p in parts if p and p.strip()]


def _str(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _opt(value: Any) -> Optional[str]:
    s = _str(value)
    return s or None


# -----------------------------
# Stats
# -----------------------------
@dataclass
class TransformStats:
    total: int = 0
    dropped: int = 0
    by_type: Counter = field(default_factory=Counter)
    by_month: Counter = field(default_factory=Counter)
    by_year: Counter = field(default_factory=Counter)
    by_owner: Counter = field(default_factory=Counter)
    amount_total: float = 0.0
    amount_by_year: Counter = field(default_factory=Counter)
    with_transcript: int = 0
    with_keywords: int = 0

    def add(self, rec: Record) -> None:
        self.total += 1
        self.by_owner[rec.owner_id] += 1
        if isinstance(rec, Expense):
            self.by_type[rec.tipo_despesa or "OUTROS"] += 1
            self.by_month[f"{rec.ano:04d}-{rec.mes:02d}"] += 1
            self.by_year[str(rec.ano)] += 1
            self.amount_total += rec.valor_liquido
            self.amount_by_year[str(rec.ano)] += rec.valor_liquido
        elif isinstance(rec, Speech):
            self.by_type[rec.tipo_discurso or "OUTROS"] += 1
            self.by_month[f"{rec.ano:04d}-{rec.mes:02d}"] += 1
            self.by_year[str(rec.ano)] += 1
            if rec.transcricao:
                self.with_transcript += 1
            if rec.palavras_chave:
                self.with_keywords += 1
        else:
            self.by_type[rec.tipo_descricao or "OUTROS"] += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "descartados": self.dropped,
            "entidades": len(self.by_owner),
            "porTipo": dict(self.by_type),
            "porAno": dict(self.by_year),
            "porMes": dict(self.by_month),
            "valorTotal": round(self.amount_total, 2),
            "valorPorAno": {k: round(v, 2) for k, v in self.amount_by_year.items()},
            "comTranscricao": self.with_transcript,
            "comPalavrasChave": self.with_keywords,
        }


# -----------------------------
# Transformers
# -----------------------------
class DropRecord(Exception):
    """Raised inside a transformer to discard one raw record."""


class RecordTransformer:
    kind = "registro"
    shapes: Sequence[ShapeMatcher] = shapes.CAMARA_LIST

    def __init__(self, stats: Optional[TransformStats] = None, now: Optional[datetime] = None) -> None:
        self.stats = stats or TransformStats()
        self.extracted_at = (now or datetime.now()).isoformat(timespec="seconds")

    def build(self, raw: dict[str, Any], owner_id: str) -> Record:
        raise NotImplementedError

    def transform(self, raw: Any, owner_id: str = "") -> Optional[Record]:
        """Canonical record, or None (logged and counted) when ``raw`` is unusable."""
        if not isinstance(raw, dict):
            return self._drop(raw, "not an object")
        try:
            rec = self.build(raw, owner_id)
        except DropRecord as e:
            return self._drop(raw, str(e))
        except (TypeError, ValueError) as e:
            return self._drop(raw, f"malformed: {e}")
        self.stats.add(rec)
        return rec

    def transform_many(self, items: Iterable[Any], owner_id: str = "") -> list[Record]:
        out = []
        for raw in items:
            rec = self.transform(raw, owner_id)
            if rec is not None:
                out.append(rec)
        return out

    def transform_payload(self, payload: Any, owner_id: str = "") -> list[Record]:
        items = shapes.find_items(payload, self.shapes, label=self.kind)
        return self.transform_many(items, owner_id)

    def _drop(self, raw: Any, reason: str) -> None:
        self.stats.dropped += 1
        preview = repr(raw)
        if len(preview) > 300:
            preview = preview[:300] + "..."
        logger.warning("Dropped %s record (%s): %s", self.kind, reason, preview)
        return None


class ExpenseTransformer(RecordTransformer):
    kind = "despesa"

    def build(self, raw: dict[str, Any], owner_id: str) -> Expense:
        doc_id = None
        for key in ("idDocumento", "codDocumento"):
            value = _str(raw.get(key))
            if value and value != "0":
                doc_id = value
                break
        if doc_id is None:
            raise DropRecord("no idDocumento/codDocumento")

        raw_date = raw.get("dataDocumento")
        ano = safe_int(raw.get("ano"))
        mes = safe_int(raw.get("mes"))
        if raw_date not in (None, ""):
            day = parse_date(raw_date)
            if day is None:
                raise DropRecord(f"unparseable dataDocumento {raw_date!r}")
        elif ano and mes and 1 <= mes <= 12:
            day = date(ano, mes, 1)
        else:
            raise DropRecord("no dataDocumento and no ano/mes")

        return Expense(
            id_documento=doc_id,
            owner_id=_str(raw.get("idDeputado")) or owner_id,
            data_documento=day.isoformat(),
            ano=ano or day.year,
            mes=mes or day.month,
            tipo_despesa=_str(raw.get("tipoDespesa")) or "OUTROS",
            cod_documento=_opt(raw.get("codDocumento")),
            tipo_documento=_str(raw.get("tipoDocumento")),
            cod_tipo_documento=_opt(raw.get("codTipoDocumento")),
            num_documento=_str(raw.get("numDocumento")),
            url_documento=_opt(raw.get("urlDocumento")),
            valor_documento=safe_float(raw.get("valorDocumento")) or 0.0,
            valor_liquido=safe_float(raw.get("valorLiquido")) or 0.0,
            valor_glosa=safe_float(raw.get("valorGlosa")) or 0.0,
            nome_fornecedor=_str(raw.get("nomeFornecedor")),
            cnpj_cpf_fornecedor=_str(raw.get("cnpjCpfFornecedor")),
            num_ressarcimento=_opt(raw.get("numRessarcimento")),
            cod_lote=_opt(raw.get("codLote")),
            parcela=safe_int(raw.get("parcela")) or 0,
            extracted_at=self.extracted_at,
            day=day,
        )


class SpeechTransformer(RecordTransformer):
    kind = "discurso"

    def build(self, raw: dict[str, Any], owner_id: str) -> Speech:
        start = dig(raw, "dataHoraInicio", "dataHora", "DataPronunciamento")
        day = parse_date(start)
        if day is None:
            raise DropRecord(f"unparseable dataHoraInicio {start!r}")

        uri_evento = _opt(raw.get("uriEvento"))
        speech_id = _str(dig(raw, "id", "codigoPronunciamento", "CodigoPronunciamento"))
        if not speech_id:
            if not uri_evento:
                raise DropRecord("no id and no uriEvento")
            speech_id = "d:" + content_key(owner_id, start, uri_evento)

        fase = raw.get("faseEvento")
        if isinstance(fase, dict):
            fase = dig(fase, "titulo", "nome", "descricao")

        start_s = _str(start)
        return Speech(
            id=speech_id,
            owner_id=owner_id,
            data_hora_inicio=start_s if _iso_re.match(start_s) else day.isoformat(),
            ano=day.year,
            mes=day.month,
            data_hora_fim=_opt(raw.get("dataHoraFim")),
            tipo_discurso=_str(dig(raw, "tipoDiscurso", "tipo", "TipoUsoPalavra.Descricao")),
            sumario=html_to_text(dig(raw, "sumario", "descricao", "Resumo")),
            transcricao=html_to_text(dig(raw, "transcricao", "textoDiscurso")),
            palavras_chave=split_keywords(dig(raw, "palavrasChave", "keywords", "Indexacao")),
            fase_evento=_str(fase),
            tipo_evento=_str(dig(raw, "tipoEvento", "evento.descricaoTipo")),
            uri_evento=uri_evento,
            url_audio=_opt(raw.get("urlAudio")),
            url_video=_opt(raw.get("urlVideo")),
            url_texto=_opt(dig(raw, "urlTexto", "uriTexto", "UrlTexto")),
            extracted_at=self.extracted_at,
            day=day,
        )


class LeadershipTransformer(RecordTransformer):
    kind = "lideranca"
    shapes = shapes.LIDERANCAS

    def build(self, raw: dict[str, Any], owner_id: str) -> LeadershipRole:
        codigo = _str(dig(raw, "Codigo", "codigo", "CodigoLideranca", "codigoLideranca"))
        if not codigo:
            raise DropRecord("no Codigo")

        ident = dig(raw, "Parlamentar.IdentificacaoParlamentar", "IdentificacaoParlamentar", default={})
        owner = _str(dig(ident, "CodigoParlamentar") or dig(raw, "codigoParlamentar"))
        if not owner:
            raise DropRecord("no parliamentarian")

        raw_date = dig(raw, "DataDesignacao", "dataDesignacao", "DataInicio")
        day = parse_date(raw_date)
        if raw_date is not None and day is None:
            raise DropRecord(f"unparseable DataDesignacao {raw_date!r}")

        return LeadershipRole(
            codigo=codigo,
            owner_id=owner,
            nome=_str(dig(raw, "Nome", "nome")),
            descricao=_str(dig(raw, "Descricao", "descricao")),
            tipo_codigo=_str(dig(raw, "TipoLideranca.Codigo", "siglaTipoLideranca")),
            tipo_descricao=_str(dig(raw, "TipoLideranca.Descricao", "descricaoTipoLideranca")),
            nome_parlamentar=_str(dig(ident, "NomeParlamentar") or dig(raw, "nomeParlamentar")),
            partido=_str(dig(ident, "SiglaPartidoParlamentar") or dig(raw, "siglaPartido")),
            uf=_str(dig(ident, "UfParlamentar") or dig(raw, "siglaUf")),
            unidade_codigo=_str(dig(raw, "Unidade.Codigo", "siglaTipoUnidadeLideranca")),
            unidade_descricao=_str(
                dig(raw, "Unidade.Descricao", "descricaoTipoUnidadeLideranca")
            ),
            data_designacao=day.isoformat() if day else None,
            extracted_at=self.extracted_at,
            day=day,
        )


def reference_list(payload: Any, label: str) -> list[dict[str, str]]:
    """Code/description pairs from the leadership type/unit/office lookup endpoints."""
    out = []
    for item in shapes.find_items(payload, shapes.TIPOS, label=label):
        if not isinstance(item, dict):
            continue
        code = _str(dig(item, "Codigo", "codigo", "Sigla", "sigla"))
        if code:
            out.append({"codigo": code, "descricao": _str(dig(item, "Descricao", "descricao"))})
    return out
