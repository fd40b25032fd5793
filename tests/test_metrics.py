"""Agregações do dashboard (funções puras, sem banco)."""

import random
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace as NS

from app.core import metrics


def _item(nome="Tênis", qtd=1, preco="100.00", custo="60.00", fornecedor="Aurora", fid=1, pid=1):
    return NS(
        produto_id=pid, produto_nome=nome, fornecedor_id=fid, fornecedor_nome=fornecedor,
        quantidade=qtd, preco_total=Decimal(preco), custo_total=Decimal(custo),
    )

def _venda(total, quando, custo="0", status="concluida", itens=None):
    return NS(
        preco_total=Decimal(total), custo_total=Decimal(custo), lucro=Decimal(total) - Decimal(custo),
        data_venda=quando, status=status, itens=itens or [],
    )

def _custo(valor, quando, categoria="operacional"):
    return NS(valor=Decimal(valor), data=quando, categoria=categoria)


def test_resumo_financeiro():
    vendas = [_venda("100", datetime(2025, 3, 1)), _venda("50", datetime(2025, 3, 2))]
    custos = [_custo("30", datetime(2025, 3, 1))]
    r = metrics.resumo_financeiro(vendas, custos)
    assert r["receita_bruta"] == Decimal("150.00")
    assert r["custos_operacionais"] == Decimal("30.00")
    assert r["lucro_liquido"] == Decimal("120.00")
    assert r["margem"] == Decimal("80.0")
    assert r["total_vendas"] == 2


def test_resumo_sem_receita_tem_margem_zero():
    r = metrics.resumo_financeiro([], [_custo("10", datetime(2025, 1, 1))])
    assert r["margem"] == Decimal("0.0")
    assert r["lucro_liquido"] == Decimal("-10.00")


def test_vendas_estornadas_nao_contam():
    vendas = [_venda("100", datetime(2025, 3, 1)), _venda("80", datetime(2025, 3, 1), status="cancelada")]
    assert metrics.resumo_financeiro(vendas, [])["receita_bruta"] == Decimal("100.00")


def test_periodo_inclusivo_com_datas():
    vendas = [
        _venda("10", datetime(2025, 1, 9, 23, 59)),
        _venda("20", datetime(2025, 1, 10, 0, 0)),
        _venda("30", datetime(2025, 1, 20, 18, 30)),
        _venda("40", datetime(2025, 1, 21, 0, 0)),
    ]
    filtradas = metrics.filtrar_periodo(vendas, "data_venda", date(2025, 1, 10), date(2025, 1, 20))
    assert [v.preco_total for v in filtradas] == [Decimal("20"), Decimal("30")]


def test_periodo_com_datetime_compara_instantes():
    v = _venda("10", datetime(2025, 1, 20, 18, 30))
    assert metrics.dentro_do_periodo(v.data_venda, fim=datetime(2025, 1, 20, 18, 30))
    assert not metrics.dentro_do_periodo(v.data_venda, fim=datetime(2025, 1, 20, 12, 0))
    assert not metrics.dentro_do_periodo(None)


def test_serie_diaria_independe_da_ordem():
    vendas = [_venda(str(10 * i), datetime(2025, 2, i), custo="1") for i in range(1, 8)]
    custos = [_custo("5", datetime(2025, 2, i)) for i in range(1, 8)]
    esperado = metrics.serie_diaria(vendas, custos)
    random.Random(7).shuffle(vendas)
    random.Random(3).shuffle(custos)
    assert metrics.serie_diaria(vendas, custos) == esperado
    assert [p["date"] for p in esperado] == [f"{d:02d}/02" for d in range(1, 8)]
    assert esperado[0]["custos_operacionais"] == Decimal("5.00")


def test_serie_diaria_vazia_tem_sete_dias():
    serie = metrics.serie_diaria([], [], hoje=date(2025, 5, 10))
    assert len(serie) == 7
    assert serie[0]["date"] == "04/05"
    assert serie[-1]["date"] == "10/05"
    assert all(p["receita_venda"] == 0 for p in serie)


def test_vendas_por_mes():
    vendas = [
        _venda("100", datetime(2025, 1, 5), itens=[_item(qtd=2)]),
        _venda("50", datetime(2025, 1, 28), itens=[_item(qtd=1)]),
        _venda("70", datetime(2025, 2, 1), itens=[_item(qtd=1)]),
    ]
    por_mes = metrics.vendas_por_mes(vendas)
    assert list(por_mes) == ["jan/2025", "fev/2025"]
    assert por_mes["jan/2025"]["vendas"] == 3
    assert por_mes["jan/2025"]["receita"] == Decimal("150.00")


def test_produtos_mais_vendidos_e_fornecedores():
    vendas = [
        _venda("300", datetime(2025, 1, 5), itens=[
            _item("Tênis", 2, "200", "120", "Aurora", 1, 1),
            _item("Bota", 1, "100", "70", "Serra", 2, 2),
        ]),
        _venda("150", datetime(2025, 1, 6), itens=[_item("Bota", 1, "150", "70", "Serra", 2, 2)]),
        _venda("999", datetime(2025, 1, 6), status="cancelada", itens=[_item("Bota", 9, "999", "0", "Serra", 2, 2)]),
    ]
    top = metrics.produtos_mais_vendidos(vendas)
    assert [(t["produto"], t["vendas"]) for t in top] == [("Bota", 2), ("Tênis", 2)]

    fornecedores = metrics.desempenho_fornecedores(vendas)
    assert fornecedores[0]["fornecedor"] == "Serra"
    assert fornecedores[0]["receita_total"] == Decimal("250.00")
    assert fornecedores[0]["lucro_bruto"] == Decimal("110.00")
    assert fornecedores[1]["produtos_vendidos"] == 2


def test_custos_por_categoria():
    custos = [
        _custo("75", datetime(2025, 1, 1), "marketing"),
        _custo("25", datetime(2025, 1, 2), "operacional"),
    ]
    cats = {c["categoria"]: c for c in metrics.custos_por_categoria(custos)}
    assert cats["marketing"]["percentual"] == 75
    assert cats["operacional"]["valor"] == Decimal("25.00")


def test_progresso_meta():
    assert metrics.progresso_meta(NS(tipo="receita", valor_alvo=Decimal("200"), valor_atual=Decimal("50"))) == Decimal("25.0")
    assert metrics.progresso_meta(NS(tipo="receita", valor_alvo=Decimal("200"), valor_atual=Decimal("500"))) == Decimal("100.0")
    # custos: menor é melhor
    assert metrics.progresso_meta(NS(tipo="custos", valor_alvo=Decimal("200"), valor_atual=Decimal("50"))) == Decimal("75.0")
    assert metrics.progresso_meta(NS(tipo="custos", valor_alvo=Decimal("200"), valor_atual=Decimal("300"))) == Decimal("0.0")


def test_valor_atual_meta_inclui_ultimo_dia():
    meta = NS(tipo="receita", data_inicio=datetime(2025, 1, 1, 9, 0), data_fim=datetime(2025, 1, 31, 0, 0))
    vendas = [
        _venda("100", datetime(2025, 1, 1, 8, 0)),
        _venda("50", datetime(2025, 1, 31, 17, 0)),
        _venda("10", datetime(2025, 2, 1, 0, 0)),
    ]
    custos = [_custo("30", datetime(2025, 1, 15))]
    assert metrics.valor_atual_meta(meta, vendas, custos) == Decimal("150.00")
    meta.tipo = "lucro"
    assert metrics.valor_atual_meta(meta, vendas, custos) == Decimal("120.00")
    meta.tipo = "vendas"
    assert metrics.valor_atual_meta(meta, vendas, custos) == Decimal("2")


def test_montar_dashboard_e_json():
    meta = NS(titulo="Receita de março", status="ativa", tipo="receita", valor_alvo=Decimal("300"), valor_atual=Decimal("150"))
    vendas = [_venda("150", datetime(2025, 3, 1), itens=[_item()])]
    d = metrics.montar_dashboard(vendas, [], date(2025, 3, 1), date(2025, 3, 31), metas=[meta])
    assert d["progresso_meta"] == Decimal("50.0")
    assert d["meta_ativa"] == "Receita de março"
    js = metrics.to_json(d)
    assert js["receita_bruta"] == 150.0
    assert js["grafico"][0]["date"] == "01/03"


def test_resumo_independe_da_ordem_e_e_idempotente():
    vendas = [_venda(str(10 * i), datetime(2025, 4, i), custo=str(i)) for i in range(1, 10)]
    custos = [_custo(str(i), datetime(2025, 4, i), "marketing" if i % 2 else "operacional") for i in range(1, 6)]
    esperado = metrics.resumo_financeiro(vendas, custos)
    assert metrics.resumo_financeiro(vendas, custos) == esperado
    assert metrics.resumo_financeiro(vendas[::-1], custos[::-1]) == esperado

    painel = metrics.montar_dashboard(vendas, custos, date(2025, 4, 1), date(2025, 4, 30), hoje=date(2025, 4, 30))
    assert metrics.montar_dashboard(vendas[::-1], custos[::-1], date(2025, 4, 1), date(2025, 4, 30), hoje=date(2025, 4, 30)) == painel


def test_dashboard_inclui_venda_no_ultimo_dia_do_periodo():
    vendas = [
        _venda("100", datetime(2025, 1, 3, 10, 0)),
        _venda("50", datetime(2025, 1, 10, 21, 45)),
        _venda("500", datetime(2025, 1, 11, 0, 0)),
    ]
    custos = [_custo("30", datetime(2025, 1, 5)), _custo("70", datetime(2024, 12, 31))]
    d = metrics.montar_dashboard(vendas, custos, date(2025, 1, 1), date(2025, 1, 10))
    assert d["receita_bruta"] == Decimal("150.00")
    assert d["custos_operacionais"] == Decimal("30.00")
    assert d["lucro_liquido"] == Decimal("120.00")
    assert d["total_vendas"] == 2


def test_fornecedor_renomeado_usa_nome_mais_recente():
    vendas = [
        _venda("100", datetime(2025, 2, 1), itens=[_item("Tênis", 1, "100", "60", "Aurora", 7, 3)]),
        _venda("120", datetime(2025, 2, 9), itens=[_item("Tênis Runner", 1, "120", "60", "Aurora Calçados", 7, 3)]),
        _venda("90", datetime(2025, 2, 5), itens=[_item("Tênis", 1, "90", "60", "Aurora", 7, 3)]),
    ]
    fornecedores = metrics.desempenho_fornecedores(vendas)
    produtos = metrics.produtos_mais_vendidos(vendas)
    for _ in range(5):
        random.Random(11).shuffle(vendas)
        assert metrics.desempenho_fornecedores(vendas) == fornecedores
        assert metrics.produtos_mais_vendidos(vendas) == produtos
    assert [(f["fornecedor"], f["receita_total"]) for f in fornecedores] == [("Aurora Calçados", Decimal("310.00"))]
    assert [(p["produto"], p["vendas"]) for p in produtos] == [("Tênis Runner", 3)]
