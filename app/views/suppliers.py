# app/views/suppliers.py
from __future__ import annotations

from flask import Blueprint, render_template, redirect, url_for, request, flash
from flask_login import login_required

from app.extensions import db
from app.core.models import Supplier
from app.core.forms import SupplierForm, split_lista
from app.core.services import (
    ServiceError, transaction,
    criar_fornecedor, atualizar_fornecedor, remover_fornecedor,
    listar_fornecedores, produtos_do_fornecedor,
)

bp = Blueprint("suppliers", __name__, template_folder="../templates")


def _dados(form: SupplierForm) -> dict:
    return dict(
        nome=form.nome.data,
        contato=form.contato.data,
        telefone=form.telefone.data,
        email=form.email.data,
        endereco=form.endereco.data,
        produtos_principais=split_lista(form.produtos_principais.data),
        status=form.status.data,
    )


@bp.get("/")
@login_required
def list_():
    q = (request.args.get("q") or "").strip()
    return render_template("suppliers_list.html", items=listar_fornecedores(q), q=q)


@bp.route("/new", methods=["GET", "POST"])
@login_required
def new():
    form = SupplierForm()
    if form.validate_on_submit():
        try:
            with transaction():
                criar_fornecedor(**_dados(form))
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("supplier_form.html", form=form), 400
        flash("Fornecedor criado", "success")
        return redirect(url_for("suppliers.list_"))
    return render_template("supplier_form.html", form=form)


@bp.route("/<int:sid>/edit", methods=["GET", "POST"])
@login_required
def edit(sid: int):
    f = db.get_or_404(Supplier, sid)
    form = SupplierForm(obj=f)
    if request.method == "GET":
        form.produtos_principais.data = ", ".join(f.produtos_principais or [])
    if form.validate_on_submit():
        try:
            with transaction():
                atualizar_fornecedor(f.id, _dados(form))
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("supplier_form.html", form=form, supplier=f), 400
        flash("Fornecedor atualizado", "success")
        return redirect(url_for("suppliers.list_"))
    return render_template("supplier_form.html", form=form, supplier=f)


@bp.get("/<int:sid>/produtos")
@login_required
def products(sid: int):
    f = db.get_or_404(Supplier, sid)
    return render_template("products_list.html", items=produtos_do_fornecedor(f.id), supplier=f, q="")


@bp.post("/<int:sid>/delete")
@login_required
def delete(sid: int):
    try:
        with transaction():
            remover_fornecedor(sid)
        flash("Fornecedor removido", "info")
    except ServiceError as e:
        flash(str(e), "danger")
    return redirect(url_for("suppliers.list_"))
