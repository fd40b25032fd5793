# app/core/reports.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple

from app.core import metrics

TIPOS_RELATORIO = ("completo", "vendas", "custos")


def _brl(valor) -> str:
    return f"R$ {metrics.como_decimal(valor):.2f}"

def _data(valor) -> str:
    return metrics.como_dia(valor).strftime("%d/%m/%Y") if valor else "-"

def _titulo(texto: str) -> List[str]:
    return [texto, "=" * len(texto)]

def _detalhe_vendas(vendas: Sequence[Any]) -> List[str]:
    linhas: List[str] = []
    for v in vendas:
        cabecalho = f"{_data(v.data_venda)} - Cliente: {v.cliente or 'N/A'} - Total: {_brl(v.preco_total)}"
        if v.status == "cancelada":
            cabecalho += " (estornada)"
        linhas.append(cabecalho)
        for item in v.itens or []:
            linhas.append(
                f"  - {item.produto_nome} ({item.fornecedor_nome or 'N/A'}) - {item.quantidade}x - {_brl(item.preco_total)}"
            )
        linhas.append("")
    return linhas

def nome_arquivo(tipo: str, hoje: Optional[date] = None) -> str:
    hoje = hoje or datetime.utcnow().date()
    return f"relatorio_{tipo}_{hoje.strftime('%d-%m-%Y')}.txt"

def gerar_relatorio_texto(
    tipo: str,
    vendas: Sequence[Any],
    custos: Sequence[Any],
    hoje: Optional[date] = None,
) -> Tuple[str, str]:
    """Devolve (nome do arquivo, conteúdo) do relatório em texto."""
    if tipo not in TIPOS_RELATORIO:
        raise ValueError(f"Tipo de relatório inválido: {tipo}")
    hoje = hoje or datetime.utcnow().date()
    resumo = metrics.resumo_financeiro(vendas, custos)
    ativas = metrics.vendas_ativas(vendas)

    titulos = {"completo": "RELATÓRIO COMPLETO", "vendas": "RELATÓRIO DE VENDAS", "custos": "RELATÓRIO DE CUSTOS"}
    out = [f"{titulos[tipo]} - LAZAVII FINANCIALS", f"Data: {hoje.strftime('%d/%m/%Y')}", ""]

    if tipo == "completo":
        out += _titulo("RESUMO EXECUTIVO")
        out += [
            f"Total de Vendas: {resumo['total_vendas']}",
            f"Receita Bruta: {_brl(resumo['receita_bruta'])}",
            f"Custos Operacionais: {_brl(resumo['custos_operacionais'])}",
            f"Lucro Líquido: {_brl(resumo['lucro_liquido'])}",
            f"Margem de Lucro: {resumo['margem']}%",
            "",
        ]
        out += _titulo("VENDAS POR MÊS")
        out += [f"{mes}: {_brl(e['receita'])}" for mes, e in metrics.vendas_por_mes(ativas).items()]
        out.append("")
        out += _titulo("PRODUTOS MAIS VENDIDOS")
        out += [f"{e['produto']}: {e['vendas']} unidades" for e in metrics.produtos_mais_vendidos(ativas, limite=10)]
        out.append("")
        out += _titulo("CUSTOS POR CATEGORIA")
        out += [f"{e['categoria']}: {_brl(e['valor'])}" for e in metrics.custos_por_categoria(custos)]
        out.append("")
        out += _titulo("DETALHES DAS VENDAS")
        out += _detalhe_vendas(vendas)

    elif tipo == "vendas":
        lucro_bruto = sum((metrics.como_decimal(v.lucro) for v in ativas), metrics.ZERO)
        out += _titulo("RESUMO")
        out += [
            f"Total de Vendas: {resumo['total_vendas']}",
            f"Receita Total: {_brl(resumo['receita_bruta'])}",
            f"Lucro Bruto: {_brl(lucro_bruto)}",
            "",
        ]
        out += _titulo("VENDAS DETALHADAS")
        out += _detalhe_vendas(vendas)

    else:
        out += _titulo("RESUMO")
        out += [
            f"Total de Custos: {_brl(resumo['custos_operacionais'])}",
            f"Número de Custos: {resumo['total_custos']}",
            "",
        ]
        out += _titulo("CUSTOS DETALHADOS")
        out += [
            f"{_data(c.data)} - {c.descricao} - {c.categoria} - {_brl(c.valor)}"
            for c in custos
        ]

    return nome_arquivo(tipo, hoje), "\n".join(out).rstrip() + "\n"
