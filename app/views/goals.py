# app/views/goals.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, render_template, redirect, url_for, request, flash
from flask_login import login_required

from app.extensions import db
from app.core import metrics
from app.core.ai import gerar_plano_meta_ia, sugerir_metas
from app.core.models import Goal
from app.core.forms import GoalForm
from app.core.services import (
    ServiceError, transaction,
    criar_meta, atualizar_meta, arquivar_meta, salvar_plano_meta,
    listar_metas, atualizar_progresso_metas, carregar_dados_negocio,
)

bp = Blueprint("goals", __name__, template_folder="../templates")


def _fim_do_dia(d):
    return datetime(d.year, d.month, d.day, 23, 59, 59)


@bp.get("/")
@login_required
def list_():
    dados = carregar_dados_negocio()
    with transaction():
        atualizar_progresso_metas(dados["vendas"], dados["custos"])
    metas = listar_metas()
    progresso = {m.id: metrics.progresso_meta(m) for m in metas}
    restantes = {m.id: metrics.dias_restantes(m.data_fim) for m in metas}
    return render_template("goals_list.html", items=metas, progresso=progresso, restantes=restantes)


@bp.route("/new", methods=["GET", "POST"])
@login_required
def new():
    form = GoalForm()
    if form.validate_on_submit():
        try:
            with transaction():
                criar_meta(
                    titulo=form.titulo.data,
                    tipo=form.tipo.data,
                    valor_alvo=form.valor_alvo.data,
                    data_fim=_fim_do_dia(form.data_fim.data),
                    descricao=form.descricao.data,
                    status=form.status.data,
                )
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("goal_form.html", form=form), 400
        flash("Meta criada", "success")
        return redirect(url_for("goals.list_"))
    return render_template("goal_form.html", form=form)


@bp.route("/<int:gid>/edit", methods=["GET", "POST"])
@login_required
def edit(gid: int):
    m = db.get_or_404(Goal, gid)
    form = GoalForm(obj=m)
    if form.validate_on_submit():
        try:
            with transaction():
                atualizar_meta(m.id, {
                    "titulo": form.titulo.data,
                    "descricao": form.descricao.data,
                    "tipo": form.tipo.data,
                    "valor_alvo": form.valor_alvo.data,
                    "data_fim": _fim_do_dia(form.data_fim.data),
                    "status": form.status.data,
                })
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("goal_form.html", form=form, goal=m), 400
        flash("Meta atualizada", "success")
        return redirect(url_for("goals.list_"))
    return render_template("goal_form.html", form=form, goal=m)


@bp.get("/<int:gid>")
@login_required
def detail(gid: int):
    m = db.get_or_404(Goal, gid)
    return render_template(
        "goal_detail.html",
        goal=m,
        progresso=metrics.progresso_meta(m),
        restantes=metrics.dias_restantes(m.data_fim),
    )


@bp.post("/<int:gid>/arquivar")
@login_required
def archive(gid: int):
    try:
        with transaction():
            arquivar_meta(gid)
        flash("Meta arquivada", "info")
    except ServiceError as e:
        flash(str(e), "danger")
    return redirect(url_for("goals.list_"))


@bp.post("/<int:gid>/plano")
@login_required
def plan(gid: int):
    m = db.get_or_404(Goal, gid)
    plano = gerar_plano_meta_ia(m, carregar_dados_negocio())
    if not plano:
        flash("Plano indisponível no momento. Verifique a configuração da IA.", "warning")
        return redirect(url_for("goals.detail", gid=gid))
    with transaction():
        salvar_plano_meta(m.id, plano)
    flash("Plano estratégico gerado", "success")
    return redirect(url_for("goals.detail", gid=gid))


@bp.post("/sugestoes")
@login_required
def suggest():
    try:
        criadas = sugerir_metas(carregar_dados_negocio())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("goals.list_"))
    com_plano = sum(1 for m in criadas if m.plano_ia)
    flash(f"{len(criadas)} metas sugeridas criadas ({com_plano} com plano de IA)", "success")
    return redirect(url_for("goals.list_"))
