# app/extensions.py
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager, AnonymousUserMixin
from flask_wtf import CSRFProtect
from flask_cors import CORS
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()


class AnonymousUser(AnonymousUserMixin):
    nome = "anônimo"
    role = None


def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    # JSON consumido fora das páginas
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite"):
        if not event.contains(Engine, "connect", _sqlite_foreign_keys):
            event.listen(Engine, "connect", _sqlite_foreign_keys)

    login_manager.init_app(app)
    login_manager.login_view = "auth.login"
    login_manager.login_message = "Faça login para continuar."
    login_manager.login_message_category = "warning"
    login_manager.anonymous_user = AnonymousUser

    from app.core.models import User  # noqa: import tardio (models importa db)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        # desativado pelo admin: sessão aberta deixa de valer
        return user if user is not None and user.ativo else None
