# app/auth/routes.py
from __future__ import annotations
from typing import Optional
from urllib.parse import urlparse

from flask import Blueprint, render_template, redirect, url_for, request, flash
from flask_login import login_user, logout_user, login_required, current_user

from app.core.forms import LoginForm
from app.core.services import transaction, autenticar

bp = Blueprint("auth", __name__, template_folder="../templates")


def _is_safe_next(nxt: Optional[str]) -> bool:
    # só caminhos locais: "/vendas/" ok, "//externo" e "http://externo" não
    if not nxt:
        return False
    parsed = urlparse(nxt)
    return not parsed.netloc and not parsed.scheme and nxt.startswith("/")


@bp.route("/auth/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))

    form = LoginForm()
    if request.method == "GET":
        return render_template("auth_login.html", form=form)
    if not form.validate_on_submit():
        flash("Informe e-mail e senha válidos", "danger")
        return render_template("auth_login.html", form=form), 400

    with transaction():
        user = autenticar(form.email.data, form.password.data)
    if user is None:
        flash("Usuário ou senha incorretos", "danger")
        return render_template("auth_login.html", form=form), 401

    login_user(user, remember=form.remember.data)
    flash(f"Bem-vindo, {user.nome}", "success")
    nxt = request.args.get("next")
    return redirect(nxt if _is_safe_next(nxt) else url_for("dashboard.index"))


@bp.get("/auth/logout")
@login_required
def logout():
    logout_user()
    flash("Sessão encerrada.", "info")
    return redirect(url_for("auth.login"))
