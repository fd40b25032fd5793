# app/views/reports.py
from __future__ import annotations

from datetime import datetime
from io import BytesIO

from flask import Blueprint, render_template, request, send_file, flash, abort
from flask_login import login_required

from app.core import metrics
from app.core.ai import gerar_analise_relatorio
from app.core.forms import DateRangeForm
from app.core.reports import TIPOS_RELATORIO, gerar_relatorio_texto
from app.core.services import carregar_dados_negocio

bp = Blueprint("reports", __name__, template_folder="../templates")


def _dados_filtrados(form: DateRangeForm):
    dados = carregar_dados_negocio()
    inicio, fim = None, None
    if form.validate():
        inicio, fim = form.inicio.data, form.fim.data
    vendas = metrics.filtrar_periodo(dados["vendas"], "data_venda", inicio, fim)
    custos = metrics.filtrar_periodo(dados["custos"], "data", inicio, fim)
    return vendas, custos


def _contexto(vendas, custos):
    ativas = metrics.vendas_ativas(vendas)
    resumo = metrics.resumo_financeiro(vendas, custos)
    resumo["fornecedores"] = metrics.desempenho_fornecedores(vendas)
    return dict(
        resumo=resumo,
        por_mes=metrics.vendas_por_mes(ativas),
        mais_vendidos=metrics.produtos_mais_vendidos(ativas, limite=10),
        por_categoria=metrics.custos_por_categoria(custos),
        fornecedores=resumo["fornecedores"],
        tipos=TIPOS_RELATORIO,
    )


@bp.get("/")
@login_required
def index():
    form = DateRangeForm(request.args)
    vendas, custos = _dados_filtrados(form)
    return render_template("reports.html", form=form, analise=None, **_contexto(vendas, custos))


@bp.post("/analise")
@login_required
def analysis():
    form = DateRangeForm(request.args)
    vendas, custos = _dados_filtrados(form)
    ctx = _contexto(vendas, custos)
    linhas = gerar_analise_relatorio(ctx["resumo"], metrics.vendas_ativas(vendas))
    if not linhas:
        flash("Análise indisponível no momento. Verifique a configuração da IA.", "warning")
    return render_template("reports.html", form=form, analise=linhas, **ctx)


@bp.get("/exportar/<tipo>")
@login_required
def export(tipo: str):
    if tipo not in TIPOS_RELATORIO:
        abort(404)
    form = DateRangeForm(request.args)
    vendas, custos = _dados_filtrados(form)
    nome, conteudo = gerar_relatorio_texto(tipo, vendas, custos, hoje=datetime.utcnow().date())
    bio = BytesIO(conteudo.encode("utf-8"))
    bio.seek(0)
    return send_file(
        bio,
        mimetype="text/plain; charset=utf-8",
        as_attachment=True,
        download_name=nome,
    )
