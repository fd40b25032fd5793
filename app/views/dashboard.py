# app/views/dashboard.py
from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, render_template, request, jsonify, redirect, url_for, flash, current_app
from flask_login import login_required

from app.core import metrics
from app.core.ai import gerar_insights_ia
from app.core.forms import DateRangeForm
from app.core.services import ServiceError, carregar_dados_negocio, carregar_dashboard, listar_insights

bp = Blueprint("dashboard", __name__, template_folder="../templates")
logger = logging.getLogger(__name__)


def _data_arg(nome: str):
    raw = (request.args.get(nome) or "").strip()
    if not raw:
        return None
    return datetime.strptime(raw, "%Y-%m-%d").date()

def _periodo():
    return _data_arg("inicio"), _data_arg("fim")


@bp.get("/")
@login_required
def index():
    form = DateRangeForm(request.args)
    try:
        inicio, fim = _periodo()
    except ValueError:
        flash("Período inválido", "warning")
        inicio = fim = None
    dados = carregar_dados_negocio()
    dashboard = metrics.montar_dashboard(dados["vendas"], dados["custos"], inicio, fim, dados["metas"])
    return render_template(
        "dashboard.html",
        form=form,
        d=dashboard,
        insights=listar_insights(),
        refresh_seconds=current_app.config.get("DASHBOARD_REFRESH_SECONDS", 30),
    )


@bp.get("/api/metricas")
@login_required
def api_metricas():
    try:
        inicio, fim = _periodo()
    except ValueError:
        return jsonify(ok=False, error="Período inválido; use AAAA-MM-DD"), 400
    dashboard = carregar_dashboard(inicio, fim)
    return jsonify(ok=True, gerado_em=datetime.utcnow().isoformat(), metricas=metrics.to_json(dashboard))


@bp.post("/insights/gerar")
@login_required
def gerar_insights():
    dados = carregar_dados_negocio()
    dashboard = metrics.montar_dashboard(dados["vendas"], dados["custos"])
    try:
        criados = gerar_insights_ia(dashboard, dados["vendas"])
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("dashboard.index"))
    if criados:
        flash(f"{len(criados)} insights gerados", "success")
    else:
        flash("Insights indisponíveis no momento. Verifique a configuração da IA.", "warning")
    return redirect(url_for("dashboard.index"))


@bp.get("/insights")
@login_required
def insights():
    todos = request.args.get("all") == "1"
    return render_template("insights.html", items=listar_insights(apenas_ativos=not todos), todos=todos)
