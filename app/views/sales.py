# app/views/sales.py
from __future__ import annotations

import logging
from datetime import datetime, date
from typing import Any, Dict, Optional

from flask import Blueprint, render_template, request, redirect, url_for, flash, jsonify
from flask_login import login_required, current_user

from app.extensions import db, csrf
from app.core import metrics
from app.core.models import Product, Sale
from app.core.forms import SaleForm, SaleEditForm, ReversalForm
from app.core.services import (
    ServiceError, EstoqueInsuficienteError, ItemVendaDTO, transaction, como_inteiro,
    criar_venda, confirmar_pagamento, atualizar_venda, estornar_venda, listar_vendas, listar_extornos,
)

bp = Blueprint("sales", __name__, template_folder="../templates")
logger = logging.getLogger(__name__)


def _dt(d: Optional[date]) -> Optional[datetime]:
    if d is None:
        return None
    if isinstance(d, datetime):
        return d
    return datetime(d.year, d.month, d.day)

def _parse_iso(raw: Any) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        raise ServiceError(f"Data inválida: {raw}")

def _produtos_disponiveis():
    return Product.query.filter(Product.status == "ativo").order_by(Product.nome).all()

def _venda_json(sale: Sale) -> Dict[str, Any]:
    return metrics.to_json({
        "id": sale.id,
        "cliente": sale.cliente,
        "data_venda": sale.data_venda,
        "metodo_pagamento": sale.metodo_pagamento,
        "status_pagamento": sale.status_pagamento,
        "data_pagamento": sale.data_pagamento,
        "status": sale.status,
        "desconto": sale.desconto,
        "subtotal": sale.subtotal,
        "valor_desconto": sale.valor_desconto,
        "preco_total": sale.preco_total,
        "custo_total": sale.custo_total,
        "lucro": sale.lucro,
        "itens": [
            {
                "produto_id": i.produto_id,
                "produto_nome": i.produto_nome,
                "fornecedor_nome": i.fornecedor_nome,
                "quantidade": i.quantidade,
                "preco_unitario": i.preco_unitario,
                "custo_unitario": i.custo_unitario,
                "preco_total": i.preco_total,
                "custo_total": i.custo_total,
                "lucro": i.lucro,
            }
            for i in sale.itens
        ],
    })


# ----------------------------
# Listagem e detalhe
# ----------------------------
@bp.get("/vendas/")
@login_required
def list_():
    q = (request.args.get("q") or "").strip()
    return render_template("sales_list.html", items=listar_vendas(q), q=q, extornos=listar_extornos(limit=20))


@bp.get("/vendas/<int:sale_id>")
@login_required
def detail(sale_id: int):
    sale = db.get_or_404(Sale, sale_id)
    return render_template("sale_detail.html", sale=sale, form_estorno=ReversalForm(), extornos=sale.extornos.all())


# ----------------------------
# Nova venda (formulário)
# ----------------------------
@bp.route("/vendas/new", methods=["GET", "POST"])
@login_required
def new():
    form = SaleForm()
    produtos = _produtos_disponiveis()
    if not form.validate_on_submit():
        if request.method == "POST":
            flash("Verifique os dados da venda", "danger")
        return render_template("sale_form.html", form=form, produtos=produtos)

    itens = [
        ItemVendaDTO(
            produto_id=entry.form.produto_id.data,
            quantidade=entry.form.quantidade.data,
            preco_unitario=entry.form.preco_unitario.data,
        )
        for entry in form.itens.entries
    ]
    try:
        with transaction():
            sale = criar_venda(
                itens=itens,
                cliente=form.cliente.data,
                metodo_pagamento=form.metodo_pagamento.data,
                data_venda=_dt(form.data_venda.data),
                data_vencimento=_dt(form.data_vencimento.data),
                desconto=form.desconto.data or 0,
                observacoes=form.observacoes.data,
                user=current_user,
            )
    except ServiceError as e:
        flash(str(e), "danger")
        return render_template("sale_form.html", form=form, produtos=produtos), 400
    flash(f"Venda registrada com {len(itens)} produto(s)", "success")
    return redirect(url_for("sales.detail", sale_id=sale.id))


# ----------------------------
# Nova venda (JSON)
# ----------------------------
@bp.post("/api/vendas")
@csrf.exempt
@login_required
def api_create():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify(ok=False, error="JSON inválido"), 400
    try:
        itens = [
            ItemVendaDTO(
                produto_id=como_inteiro(i["produto_id"], "Produto"),
                quantidade=i.get("quantidade"),
                preco_unitario=i.get("preco_unitario"),
                custo_unitario=i.get("custo_unitario"),
            )
            for i in payload.get("itens") or []
        ]
    except (KeyError, TypeError, ValueError, ServiceError):
        return jsonify(ok=False, error="Itens inválidos"), 400

    try:
        with transaction():
            sale = criar_venda(
                itens=itens,
                cliente=payload.get("cliente") or "",
                metodo_pagamento=payload.get("metodo_pagamento") or "",
                data_venda=_parse_iso(payload.get("data_venda")),
                data_vencimento=_parse_iso(payload.get("data_vencimento")),
                desconto=payload.get("desconto") or 0,
                observacoes=payload.get("observacoes"),
                totais_informados=payload.get("totais"),
                user=current_user,
            )
    except EstoqueInsuficienteError as e:
        return jsonify(
            ok=False, error=str(e),
            produto_id=e.produto_id, disponivel=e.disponivel, solicitado=e.solicitado,
        ), 400
    except ServiceError as e:
        return jsonify(ok=False, error=str(e)), 400
    return jsonify(ok=True, venda=_venda_json(sale)), 201


# ----------------------------
# Pagamento, edição e estorno
# ----------------------------
@bp.post("/vendas/<int:sale_id>/pagar")
@login_required
def pay(sale_id: int):
    try:
        with transaction():
            confirmar_pagamento(sale_id)
        flash("Pagamento confirmado", "success")
    except ServiceError as e:
        flash(str(e), "danger")
    return redirect(request.referrer or url_for("sales.list_"))


@bp.route("/vendas/<int:sale_id>/edit", methods=["GET", "POST"])
@login_required
def edit(sale_id: int):
    sale = db.get_or_404(Sale, sale_id)
    form = SaleEditForm(obj=sale)
    if form.validate_on_submit():
        try:
            with transaction():
                atualizar_venda(sale.id, {
                    "cliente": form.cliente.data,
                    "observacoes": form.observacoes.data,
                    "data_venda": _dt(form.data_venda.data),
                    "data_vencimento": _dt(form.data_vencimento.data),
                })
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("sale_edit.html", form=form, sale=sale), 400
        flash("Venda atualizada", "success")
        return redirect(url_for("sales.detail", sale_id=sale.id))
    return render_template("sale_edit.html", form=form, sale=sale)


@bp.post("/vendas/<int:sale_id>/estornar")
@login_required
def reverse(sale_id: int):
    form = ReversalForm()
    if not form.validate_on_submit():
        flash("Informe o motivo do estorno", "warning")
        return redirect(url_for("sales.detail", sale_id=sale_id))
    try:
        with transaction():
            estornar_venda(sale_id, form.motivo.data, current_user, observacoes=form.observacoes.data)
        flash("Venda estornada e estoque devolvido", "info")
    except ServiceError as e:
        flash(str(e), "danger")
    return redirect(url_for("sales.detail", sale_id=sale_id))
