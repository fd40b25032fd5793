# app/views/logs.py
from __future__ import annotations

from flask import Blueprint, render_template, request
from flask_login import login_required

from app.core.services import listar_logs

bp = Blueprint("logs", __name__, template_folder="../templates")


@bp.get("/")
@login_required
def list_():
    acao = (request.args.get("acao") or "").strip()
    return render_template("logs_list.html", items=listar_logs(acao or None), acao=acao)
