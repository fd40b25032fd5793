# app/__init__.py
from __future__ import annotations

import logging

from flask import Flask, render_template, jsonify, request, send_from_directory
from .extensions import init_extensions, db
from .core.models import ensure_admin

logger = logging.getLogger(__name__)


def _configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("app").setLevel(level)


def create_app(config_object="config.Config"):
    app = Flask(
        __name__,
        template_folder="templates",
        static_folder="static",
        static_url_path="/static",
    )

    # Config básica
    app.config.from_object(config_object)
    # Segurança adicional padrão
    app.config.setdefault("SESSION_COOKIE_SAMESITE", "Lax")
    app.config.setdefault("SESSION_COOKIE_SECURE", False)
    app.config.setdefault("WTF_CSRF_TIME_LIMIT", None)

    _configure_logging(app)
    init_extensions(app)

    # Blueprints
    from .auth.routes import bp as auth_bp
    from .views.dashboard import bp as dashboard_bp
    from .views.suppliers import bp as suppliers_bp
    from .views.products import bp as products_bp
    from .views.sales import bp as sales_bp
    from .views.costs import bp as costs_bp
    from .views.goals import bp as goals_bp
    from .views.reports import bp as reports_bp
    from .views.logs import bp as logs_bp
    from .views.users import bp as users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(suppliers_bp, url_prefix="/fornecedores")
    app.register_blueprint(products_bp, url_prefix="/produtos")
    app.register_blueprint(sales_bp)
    app.register_blueprint(costs_bp, url_prefix="/custos")
    app.register_blueprint(goals_bp, url_prefix="/metas")
    app.register_blueprint(reports_bp, url_prefix="/relatorios")
    app.register_blueprint(logs_bp, url_prefix="/logs")
    app.register_blueprint(users_bp, url_prefix="/usuarios")

    # Arquivos enviados (fotos de produtos)
    @app.get("/uploads/<path:filename>")
    def uploads(filename):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    # Healthcheck simples
    @app.get("/health")
    def health():
        return jsonify(ok=True)

    # Erros básicos
    def _wants_json():
        return request.path.startswith("/api/") or request.accept_mimetypes.best == "application/json"

    @app.errorhandler(404)
    def not_found(e):
        if _wants_json():
            return jsonify(ok=False, error="Não encontrado"), 404
        return render_template("404.html"), 404

    @app.errorhandler(403)
    def forbidden(e):
        if _wants_json():
            return jsonify(ok=False, error="Acesso negado"), 403
        return render_template("403.html"), 403

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Erro interno em %s: %s", request.path, e)
        if _wants_json():
            return jsonify(ok=False, error="Erro interno"), 500
        return render_template("500.html"), 500

    # Primeira execução: cria tabelas e admin
    with app.app_context():
        db.create_all()
        try:
            ensure_admin()
        except Exception:
            db.session.rollback()
            logger.exception("Não foi possível criar o administrador inicial")

    return app
