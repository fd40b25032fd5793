# app/views/products.py
from __future__ import annotations

from decimal import Decimal
from io import StringIO, BytesIO
import csv

from flask import (
    Blueprint, render_template, redirect, url_for,
    request, flash, send_file
)
from flask_login import login_required, current_user

from app.extensions import db
from app.core.models import Product, Supplier, Log
from app.core.forms import ProductForm, StockAdjustForm
from app.core.services import (
    ServiceError, transaction,
    criar_produto, atualizar_produto, remover_produto, buscar_produtos, ajustar_estoque,
)
from app.core.storage import salvar_imagem, remover_imagem

bp = Blueprint("products", __name__, template_folder="../templates")


# ----------------------------
# Helpers
# ----------------------------
def _set_supplier_choices(form: ProductForm) -> None:
    fornecedores = Supplier.query.filter_by(status="ativo").order_by(Supplier.nome).all()
    form.supplier_id.choices = [(0, "Selecione...")] + [(f.id, f.nome) for f in fornecedores]

def _upload_foto(form: ProductForm):
    arquivo = form.foto.data
    if arquivo and getattr(arquivo, "filename", ""):
        return salvar_imagem(arquivo, "produtos")
    return None


# ----------------------------
# Listagem
# ----------------------------
@bp.get("/")
@login_required
def list_():
    q = (request.args.get("q") or "").strip()
    show_inactive = request.args.get("all") == "1"
    items = buscar_produtos(q, apenas_ativos=not show_inactive)
    return render_template("products_list.html", items=items, q=q, show_inactive=show_inactive)


# ----------------------------
# Criar
# ----------------------------
@bp.route("/new", methods=["GET", "POST"])
@login_required
def new():
    form = ProductForm()
    _set_supplier_choices(form)
    if not form.validate_on_submit():
        return render_template("product_form.html", form=form)

    foto_url = None
    try:
        foto_url = _upload_foto(form)
        with transaction():
            criar_produto(
                nome=form.nome.data,
                supplier_id=form.supplier_id.data,
                preco_compra=form.preco_compra.data or Decimal("0.00"),
                preco_venda=form.preco_venda.data or Decimal("0.00"),
                cor=form.cor.data,
                tamanho=form.tamanho.data,
                stock=form.stock.data or 0,
                foto_url=foto_url,
                status=form.status.data,
            )
    except ServiceError as e:
        remover_imagem(foto_url)
        flash(str(e), "danger")
        return render_template("product_form.html", form=form), 400
    flash("Produto criado", "success")
    return redirect(url_for("products.list_"))


# ----------------------------
# Editar
# ----------------------------
@bp.route("/<int:pid>/edit", methods=["GET", "POST"])
@login_required
def edit(pid: int):
    p = db.get_or_404(Product, pid)
    form = ProductForm(obj=p)
    _set_supplier_choices(form)
    if not form.validate_on_submit():
        return render_template("product_form.html", form=form, product=p)

    foto_antiga = p.foto_url
    foto_nova = None
    try:
        foto_nova = _upload_foto(form)
        dados = dict(
            nome=form.nome.data,
            supplier_id=form.supplier_id.data,
            preco_compra=form.preco_compra.data or Decimal("0.00"),
            preco_venda=form.preco_venda.data or Decimal("0.00"),
            cor=form.cor.data,
            tamanho=form.tamanho.data,
            status=form.status.data,
        )
        if foto_nova:
            dados["foto_url"] = foto_nova
        with transaction():
            atualizar_produto(p.id, dados)
    except ServiceError as e:
        remover_imagem(foto_nova)
        flash(str(e), "danger")
        return render_template("product_form.html", form=form, product=p), 400

    if foto_nova and foto_antiga:
        remover_imagem(foto_antiga)
    flash("Produto atualizado", "success")
    return redirect(url_for("products.list_"))


# ----------------------------
# Ativar/Desativar
# ----------------------------
@bp.post("/<int:pid>/toggle")
@login_required
def toggle(pid: int):
    p = db.get_or_404(Product, pid)
    with transaction():
        atualizar_produto(p.id, {"status": "inativo" if p.status == "ativo" else "ativo"})
    flash("Status atualizado", "info")
    return redirect(url_for("products.list_"))


# ----------------------------
# Remover
# ----------------------------
@bp.post("/<int:pid>/delete")
@login_required
def delete(pid: int):
    p = db.get_or_404(Product, pid)
    foto = p.foto_url
    try:
        with transaction():
            remover_produto(p.id)
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("products.list_"))
    remover_imagem(foto)
    flash("Produto removido", "info")
    return redirect(url_for("products.list_"))


# ----------------------------
# Ajuste de estoque
# ----------------------------
@bp.route("/<int:pid>/estoque", methods=["GET", "POST"])
@login_required
def stock_adjust(pid: int):
    p = db.get_or_404(Product, pid)
    form = StockAdjustForm()
    historico = (
        Log.query.filter(Log.detalhes.like(f"%Produto: {p.nome} (#{p.id})%"))
        .order_by(Log.timestamp.desc()).limit(20).all()
    )
    if form.validate_on_submit():
        try:
            with transaction():
                ajustar_estoque(p.id, form.ajuste.data, form.motivo.data, current_user)
        except ServiceError as e:
            flash(str(e), "danger")
            return render_template("stock_adjust.html", form=form, product=p, historico=historico), 400
        flash(f"Estoque atualizado para {p.stock} unidades", "success")
        return redirect(url_for("products.list_"))
    return render_template("stock_adjust.html", form=form, product=p, historico=historico)


# ----------------------------
# Exportar CSV
# ----------------------------
@bp.get("/export.csv")
@login_required
def export_csv():
    qs = Product.query.order_by(Product.id.asc()).all()

    buf = StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow([
        "id", "nome", "fornecedor_id", "fornecedor", "cor", "tamanho",
        "preco_compra", "preco_venda", "estoque", "status"
    ])
    for p in qs:
        w.writerow([
            p.id, p.nome or "", p.supplier_id, p.fornecedor_nome or "",
            p.cor or "", p.tamanho or "",
            str(p.preco_compra or Decimal("0.00")),
            str(p.preco_venda or Decimal("0.00")),
            p.stock,
            p.status,
        ])

    data = buf.getvalue().encode("utf-8-sig")
    bio = BytesIO(data)
    bio.seek(0)
    return send_file(
        bio,
        mimetype="text/csv; charset=utf-8",
        as_attachment=True,
        download_name="produtos.csv"
    )
