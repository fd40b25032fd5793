# app/views/users.py
from __future__ import annotations
from flask import Blueprint, render_template, redirect, url_for, flash, request, abort
from flask_login import login_required, current_user
from app.extensions import db
from app.core.models import User
from app.core.forms import UserCreateForm, UserEditForm
from app.core.services import ServiceError, transaction, criar_usuario, atualizar_usuario, alternar_usuario

bp = Blueprint("users", __name__, template_folder="../templates")

@bp.before_request
@login_required
def _only_admin():
    if getattr(current_user, "role", "") != "admin":
        abort(403)

@bp.get("/")
def list_():
    q = request.args.get("q", "").strip().lower()
    query = User.query.order_by(User.nome.asc())
    if q:
        like = f"%{q}%"
        query = query.filter(db.func.lower(User.nome).like(like) | db.func.lower(User.email).like(like))
    return render_template("users_list.html", items=query.limit(200).all(), q=q)

@bp.route("/new", methods=["GET", "POST"])
def new():
    form = UserCreateForm()
    if not form.validate_on_submit():
        return render_template("user_form.html", form=form)
    try:
        with transaction():
            criar_usuario(form.nome.data, form.email.data, form.senha.data, form.role.data, form.ativo.data)
    except ServiceError as e:
        flash(str(e), "danger")
        return render_template("user_form.html", form=form), 400
    flash("Usuário criado", "success")
    return redirect(url_for("users.list_"))

@bp.route("/<int:uid>/edit", methods=["GET", "POST"])
def edit(uid: int):
    u = db.get_or_404(User, uid)
    form = UserEditForm(obj=u)
    if not form.validate_on_submit():
        return render_template("user_form.html", form=form, user=u)
    try:
        with transaction():
            atualizar_usuario(u.id, {
                "nome": form.nome.data,
                "email": form.email.data,
                "role": form.role.data,
                "ativo": form.ativo.data,
                "nova_senha": form.nova_senha.data,
            })
    except ServiceError as e:
        flash(str(e), "danger")
        return render_template("user_form.html", form=form, user=u), 400
    flash("Usuário atualizado", "success")
    return redirect(url_for("users.list_"))

@bp.post("/<int:uid>/toggle")
def toggle(uid: int):
    try:
        with transaction():
            alternar_usuario(uid, current_user)
        flash("Status atualizado", "info")
    except ServiceError as e:
        flash(str(e), "warning")
    return redirect(url_for("users.list_"))
