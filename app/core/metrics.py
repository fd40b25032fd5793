# app/core/metrics.py
"""
Agregações do dashboard e dos relatórios.

Funções puras sobre listas já carregadas de vendas e custos (modelos ou
qualquer objeto com os mesmos atributos). Nada aqui acessa o banco; tudo é
recalculado a cada chamada.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.core.models import _as_money

ZERO = Decimal("0.00")
MESES = ("jan", "fev", "mar", "abr", "mai", "jun", "jul", "ago", "set", "out", "nov", "dez")


# =============================================================================
# Utilidades
# =============================================================================

def como_decimal(value) -> Decimal:
    return _as_money(value or 0)

def vendas_ativas(vendas: Iterable[Any]) -> List[Any]:
    # vendas estornadas não contam como receita
    return [v for v in vendas if getattr(v, "status", None) != "cancelada"]

def como_dia(valor) -> Optional[date]:
    if valor is None:
        return None
    if isinstance(valor, datetime):
        return valor.date()
    return valor

def label_dia(d: date) -> str:
    return d.strftime("%d/%m")

def label_mes(d: date) -> str:
    return f"{MESES[d.month - 1]}/{d.year}"

def dentro_do_periodo(valor, inicio=None, fim=None) -> bool:
    """
    Inclusivo nos dois limites. Limite `date` compara dias de calendário,
    limite `datetime` compara instantes.
    """
    if valor is None:
        return False
    for limite, depois in ((inicio, False), (fim, True)):
        if limite is None:
            continue
        if isinstance(limite, datetime):
            atual = valor if isinstance(valor, datetime) else datetime(valor.year, valor.month, valor.day)
        else:
            atual = como_dia(valor)
        if depois and atual > limite:
            return False
        if not depois and atual < limite:
            return False
    return True

def filtrar_periodo(registros: Iterable[Any], campo: str, inicio=None, fim=None) -> List[Any]:
    return [r for r in registros if dentro_do_periodo(getattr(r, campo, None), inicio, fim)]


# =============================================================================
# Resumo financeiro
# =============================================================================

def resumo_financeiro(vendas: Sequence[Any], custos: Sequence[Any]) -> Dict[str, Any]:
    vendas = vendas_ativas(vendas)
    receita = sum((como_decimal(v.preco_total) for v in vendas), ZERO)
    cmv = sum((como_decimal(v.custo_total) for v in vendas), ZERO)
    custos_op = sum((como_decimal(c.valor) for c in custos), ZERO)
    lucro = receita - custos_op
    margem = (lucro / receita * 100).quantize(Decimal("0.1")) if receita > 0 else Decimal("0.0")
    return {
        "receita_bruta": _as_money(receita),
        "custo_mercadorias": _as_money(cmv),
        "custos_operacionais": _as_money(custos_op),
        "lucro_liquido": _as_money(lucro),
        "margem": margem,
        "total_vendas": len(vendas),
        "total_custos": len(custos),
    }


# =============================================================================
# Séries para gráficos
# =============================================================================

def serie_diaria(vendas: Sequence[Any], custos: Sequence[Any], hoje: Optional[date] = None) -> List[Dict[str, Any]]:
    buckets: Dict[date, Dict[str, Any]] = {}

    def _bucket(d: date) -> Dict[str, Any]:
        if d not in buckets:
            buckets[d] = {"date": label_dia(d), "receita_venda": ZERO, "custo_total": ZERO, "custos_operacionais": ZERO}
        return buckets[d]

    for v in vendas_ativas(vendas):
        d = como_dia(v.data_venda)
        if d is None:
            continue
        b = _bucket(d)
        b["receita_venda"] += como_decimal(v.preco_total)
        b["custo_total"] += como_decimal(v.custo_total)

    for c in custos:
        d = como_dia(c.data)
        if d is None:
            continue
        _bucket(d)["custos_operacionais"] += como_decimal(c.valor)

    if not buckets:
        hoje = hoje or datetime.utcnow().date()
        return [
            {"date": label_dia(hoje - timedelta(days=6 - i)), "receita_venda": ZERO, "custo_total": ZERO, "custos_operacionais": ZERO}
            for i in range(7)
        ]

    return [buckets[d] for d in sorted(buckets)]

def vendas_por_mes(vendas: Sequence[Any]) -> "OrderedDict[str, Dict[str, Any]]":
    por_mes: Dict[date, Dict[str, Any]] = {}
    for v in vendas_ativas(vendas):
        d = como_dia(v.data_venda)
        if d is None:
            continue
        chave = date(d.year, d.month, 1)
        entry = por_mes.setdefault(chave, {"mes": label_mes(chave), "vendas": 0, "receita": ZERO})
        entry["vendas"] += sum(int(i.quantidade) for i in (v.itens or []))
        entry["receita"] += como_decimal(v.preco_total)
    return OrderedDict((por_mes[k]["mes"], por_mes[k]) for k in sorted(por_mes))

def _ordem_venda(venda: Any):
    quando = getattr(venda, "data_venda", None)
    if quando is None:
        quando = datetime.min
    elif not isinstance(quando, datetime):
        quando = datetime(quando.year, quando.month, quando.day)
    return quando, getattr(venda, "id", None) or 0

def _rotular(acc: Dict[Any, Dict[str, Any]], rotulos: Dict[Any, tuple], campo: str) -> None:
    # o nome exibido é o da venda mais recente do grupo
    for chave, (_, nome) in rotulos.items():
        acc[chave][campo] = nome

def produtos_mais_vendidos(vendas: Sequence[Any], limite: Optional[int] = 5) -> List[Dict[str, Any]]:
    acc: Dict[Any, Dict[str, Any]] = {}
    rotulos: Dict[Any, tuple] = {}
    for v in vendas_ativas(vendas):
        ordem = _ordem_venda(v)
        for item in v.itens or []:
            chave = getattr(item, "produto_id", None) or item.produto_nome
            entry = acc.setdefault(chave, {"produto": item.produto_nome, "vendas": 0, "receita": ZERO})
            entry["vendas"] += int(item.quantidade)
            entry["receita"] += como_decimal(item.preco_total)
            rotulos[chave] = max(rotulos.get(chave, (ordem, item.produto_nome)), (ordem, item.produto_nome))
    _rotular(acc, rotulos, "produto")
    ordenados = sorted(acc.values(), key=lambda e: (-e["vendas"], e["produto"]))
    return ordenados[:limite] if limite else ordenados

def desempenho_fornecedores(vendas: Sequence[Any]) -> List[Dict[str, Any]]:
    acc: Dict[Any, Dict[str, Any]] = {}
    rotulos: Dict[Any, tuple] = {}
    for v in vendas_ativas(vendas):
        ordem = _ordem_venda(v)
        for item in v.itens or []:
            nome = item.fornecedor_nome or "Desconhecido"
            chave = getattr(item, "fornecedor_id", None) or nome
            entry = acc.setdefault(chave, {
                "fornecedor": nome,
                "produtos_vendidos": 0,
                "custo_total": ZERO,
                "receita_total": ZERO,
                "lucro_bruto": ZERO,
            })
            preco = como_decimal(item.preco_total)
            custo = como_decimal(item.custo_total)
            entry["produtos_vendidos"] += int(item.quantidade)
            entry["custo_total"] += custo
            entry["receita_total"] += preco
            entry["lucro_bruto"] += preco - custo
            rotulos[chave] = max(rotulos.get(chave, (ordem, nome)), (ordem, nome))
    _rotular(acc, rotulos, "fornecedor")
    return sorted(acc.values(), key=lambda e: (-e["receita_total"], e["fornecedor"]))

def custos_por_categoria(custos: Sequence[Any]) -> List[Dict[str, Any]]:
    acc: Dict[str, Decimal] = {}
    for c in custos:
        acc[c.categoria] = acc.get(c.categoria, ZERO) + como_decimal(c.valor)
    total = sum(acc.values(), ZERO)
    out = []
    for categoria in sorted(acc):
        valor = acc[categoria]
        percentual = int((valor / total * 100).quantize(Decimal("1"))) if total > 0 else 0
        out.append({"categoria": categoria, "valor": valor, "percentual": percentual})
    return out


# =============================================================================
# Metas
# =============================================================================

def progresso_meta(meta: Any) -> Decimal:
    alvo = como_decimal(meta.valor_alvo)
    atual = como_decimal(meta.valor_atual)
    if alvo <= 0:
        return Decimal("0.0")
    if meta.tipo == "custos":
        # menor é melhor
        pct = (alvo - atual) / alvo * 100
    else:
        pct = atual / alvo * 100
    pct = min(Decimal("100"), max(Decimal("0"), pct))
    return pct.quantize(Decimal("0.1"))

def valor_atual_meta(meta: Any, vendas: Sequence[Any], custos: Sequence[Any]) -> Decimal:
    inicio, fim = como_dia(meta.data_inicio), como_dia(meta.data_fim)
    vs = vendas_ativas(filtrar_periodo(vendas, "data_venda", inicio, fim))
    cs = filtrar_periodo(custos, "data", inicio, fim)
    receita = sum((como_decimal(v.preco_total) for v in vs), ZERO)
    total_custos = sum((como_decimal(c.valor) for c in cs), ZERO)
    if meta.tipo == "receita":
        return receita
    if meta.tipo == "vendas":
        return Decimal(len(vs))
    if meta.tipo == "lucro":
        return receita - total_custos
    return total_custos

def dias_restantes(data_fim, hoje: Optional[date] = None) -> int:
    hoje = hoje or datetime.utcnow().date()
    return max(0, (como_dia(data_fim) - hoje).days)


# =============================================================================
# Dashboard
# =============================================================================

def montar_dashboard(
    vendas: Sequence[Any],
    custos: Sequence[Any],
    inicio=None,
    fim=None,
    metas: Sequence[Any] = (),
    hoje: Optional[date] = None,
) -> Dict[str, Any]:
    """Aplica o filtro de período e monta resumo, séries e progresso da meta ativa."""
    vs = filtrar_periodo(vendas, "data_venda", inicio, fim)
    cs = filtrar_periodo(custos, "data", inicio, fim)
    meta_ativa = next((m for m in metas if m.status == "ativa"), None)
    out = resumo_financeiro(vs, cs)
    out.update({
        "progresso_meta": progresso_meta(meta_ativa) if meta_ativa else Decimal("0.0"),
        "meta_ativa": meta_ativa.titulo if meta_ativa else None,
        "grafico": serie_diaria(vs, cs, hoje=hoje),
        "fornecedores": desempenho_fornecedores(vs),
    })
    return out

def to_json(value):
    """Converte Decimals/datas aninhados para tipos serializáveis."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value
