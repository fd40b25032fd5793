# app/views/costs.py
from __future__ import annotations

from datetime import datetime, date
from typing import Optional

from flask import Blueprint, render_template, redirect, url_for, request, flash
from flask_login import login_required, current_user

from app.extensions import db
from app.core.models import Cost, Product, Supplier, CATEGORIAS_CUSTO
from app.core.forms import CostForm, StockPurchaseForm
from app.core.services import (
    ServiceError, transaction,
    criar_custo, atualizar_custo, remover_custo, alternar_status_custo,
    marcar_custos_vencidos, listar_custos, comprar_estoque,
)

bp = Blueprint("costs", __name__, template_folder="../templates")


def _dt(d: Optional[date]) -> Optional[datetime]:
    if d is None:
        return None
    return d if isinstance(d, datetime) else datetime(d.year, d.month, d.day)

def _set_supplier_choices(form: CostForm) -> None:
    form.supplier_id.choices = [(0, "Nenhum")] + [(f.id, f.nome) for f in Supplier.query.order_by(Supplier.nome).all()]

def _set_product_choices(form: StockPurchaseForm) -> None:
    form.product_id.choices = [
        (p.id, f"{p.nome} - {p.fornecedor_nome} (estoque: {p.stock})")
        for p in Product.query.filter_by(status="ativo").order_by(Product.nome).all()
    ]

def _dados(form: CostForm) -> dict:
    return dict(
        descricao=form.descricao.data,
        categoria=form.categoria.data,
        valor=form.valor.data,
        data=_dt(form.data.data) or datetime.utcnow(),
        data_vencimento=_dt(form.data_vencimento.data),
        supplier_id=form.supplier_id.data or None,
        metodo_pagamento=form.metodo_pagamento.data,
        observacoes=form.observacoes.data,
        status=form.status.data,
        recorrente=form.recorrente.data,
    )


@bp.get("/")
@login_required
def list_():
    with transaction():
        marcar_custos_vencidos()
    categoria = request.args.get("categoria") or None
    if categoria not in CATEGORIAS_CUSTO:
        categoria = None
    q = (request.args.get("q") or "").strip()
    items = listar_custos(categoria, q)
    return render_template("costs_list.html", items=items, q=q, categoria=categoria, categorias=CATEGORIAS_CUSTO)


@bp.route("/new", methods=["GET", "POST"])
@login_required
def new():
    form = CostForm()
    _set_supplier_choices(form)
    if form.validate_on_submit():
        try:
            with transaction():
                criar_custo(**_dados(form))
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("cost_form.html", form=form), 400
        flash("Custo registrado", "success")
        return redirect(url_for("costs.list_"))
    return render_template("cost_form.html", form=form)


@bp.route("/<int:cid>/edit", methods=["GET", "POST"])
@login_required
def edit(cid: int):
    c = db.get_or_404(Cost, cid)
    form = CostForm(obj=c)
    _set_supplier_choices(form)
    if request.method == "GET":
        form.supplier_id.data = c.supplier_id or 0
    if form.validate_on_submit():
        try:
            with transaction():
                atualizar_custo(c.id, _dados(form))
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("cost_form.html", form=form, cost=c), 400
        flash("Custo atualizado", "success")
        return redirect(url_for("costs.list_"))
    return render_template("cost_form.html", form=form, cost=c)


@bp.post("/<int:cid>/toggle")
@login_required
def toggle(cid: int):
    try:
        with transaction():
            c = alternar_status_custo(cid)
        flash(f"Custo marcado como {c.status}", "info")
    except ServiceError as e:
        flash(str(e), "danger")
    return redirect(url_for("costs.list_"))


@bp.post("/<int:cid>/delete")
@login_required
def delete(cid: int):
    try:
        with transaction():
            remover_custo(cid)
        flash("Custo removido", "info")
    except ServiceError as e:
        flash(str(e), "danger")
    return redirect(url_for("costs.list_"))


# ----------------------------
# Compra de estoque
# ----------------------------
@bp.route("/compra-estoque", methods=["GET", "POST"])
@login_required
def stock_purchase():
    form = StockPurchaseForm()
    _set_product_choices(form)
    if request.method == "GET" and request.args.get("produto", type=int):
        form.product_id.data = request.args.get("produto", type=int)
    if form.validate_on_submit():
        try:
            with transaction():
                p, c = comprar_estoque(
                    form.product_id.data,
                    form.quantidade.data,
                    form.custo_unitario.data,
                    form.motivo.data,
                    current_user,
                )
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("stock_purchase.html", form=form), 400
        flash(f"Compra registrada: {form.quantidade.data} unidades, custo de R$ {c.valor:.2f}", "success")
        return redirect(url_for("costs.list_"))
    return render_template("stock_purchase.html", form=form)
