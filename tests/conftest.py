"""Pytest configuration and fixtures."""

from datetime import datetime
from decimal import Decimal

import pytest

from app import create_app
from app.extensions import db
from app.core.models import Supplier, Product, User
from config import Config


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    GEMINI_API_KEY = "test-key"
    GEMINI_MODEL = "gemini-test"
    GEMINI_TIMEOUT = 5
    MAX_IMAGE_BYTES = 1024
    DASHBOARD_REFRESH_SECONDS = 30
    LOG_LEVEL = "WARNING"


@pytest.fixture
def app(tmp_path):
    """App com banco SQLite em memória. Nenhum contexto fica ativo entre requisições."""
    app = create_app(TestConfig)
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def db_session(app):
    with app.app_context():
        yield db.session


@pytest.fixture
def client(app):
    return app.test_client()


def _criar_usuario(app, email, role, senha="segredo123"):
    with app.app_context():
        u = User(nome=email.split("@")[0], email=email, role=role, ativo=True)
        u.set_password(senha)
        db.session.add(u)
        db.session.commit()
        return u.id


@pytest.fixture
def auth_client(app):
    _criar_usuario(app, "gerente@lazavii.com", "admin")
    c = app.test_client()
    resp = c.post("/auth/login", data={"email": "gerente@lazavii.com", "password": "segredo123"})
    assert resp.status_code == 302
    return c


@pytest.fixture
def user_client(app):
    _criar_usuario(app, "vendedor@lazavii.com", "usuario")
    c = app.test_client()
    c.post("/auth/login", data={"email": "vendedor@lazavii.com", "password": "segredo123"})
    return c


# ----------------------------
# Factories
# ----------------------------

@pytest.fixture
def make_supplier():
    def _make(nome="Calçados Aurora", contato="Marina"):
        f = Supplier(nome=nome, contato=contato, telefone="", email="", endereco="", produtos_principais=[])
        db.session.add(f)
        db.session.commit()
        return f
    return _make


@pytest.fixture
def make_product(make_supplier):
    def _make(nome="Tênis Runner", stock=10, preco_venda="100.00", preco_compra="60.00", supplier=None, cor="preto", tamanho="40"):
        supplier = supplier or make_supplier()
        p = Product(
            nome=nome,
            supplier_id=supplier.id,
            fornecedor_nome=supplier.nome,
            preco_venda=Decimal(preco_venda),
            preco_compra=Decimal(preco_compra),
            stock=stock,
            cor=cor,
            tamanho=tamanho,
        )
        db.session.add(p)
        db.session.commit()
        return p
    return _make


@pytest.fixture
def make_sale(make_product):
    from app.core.services import ItemVendaDTO, criar_venda, transaction

    def _make(produto=None, quantidade=1, metodo="pix", data_venda=None, **kwargs):
        produto = produto or make_product()
        with transaction():
            sale = criar_venda(
                itens=[ItemVendaDTO(produto_id=produto.id, quantidade=quantidade)],
                cliente=kwargs.pop("cliente", "Cliente Teste"),
                metodo_pagamento=metodo,
                data_venda=data_venda or datetime.utcnow(),
                **kwargs,
            )
        return sale
    return _make
