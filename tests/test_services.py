"""Cadastros: fornecedores, produtos, custos e metas."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.core.metrics import progresso_meta
from app.core.models import Supplier, Product, Cost, Goal, User
from app.core.services import (
    ServiceError, ValidationError, transaction,
    criar_fornecedor, atualizar_fornecedor, remover_fornecedor, listar_fornecedores,
    criar_produto, atualizar_produto, remover_produto, buscar_produtos,
    criar_custo, alternar_status_custo, marcar_custos_vencidos, listar_custos,
    criar_meta, arquivar_meta, atualizar_progresso_metas,
    criar_usuario, alternar_usuario, autenticar,
)


# ----------------------------
# Fornecedores
# ----------------------------

def test_criar_fornecedor(db_session):
    with transaction():
        f = criar_fornecedor("Calçados Sul", "Pedro", email="VENDAS@SUL.COM", produtos_principais=["Botas", " ", "Tênis "])
    f = db_session.get(Supplier, f.id)
    assert f.email == "vendas@sul.com"
    assert f.produtos_principais == ["Botas", "Tênis"]
    assert f.status == "ativo"


def test_fornecedor_exige_contato(db_session):
    with pytest.raises(ValidationError):
        with transaction():
            criar_fornecedor("Calçados Sul", "  ")
    assert Supplier.query.count() == 0


def test_renomear_fornecedor_atualiza_produtos(db_session, make_product):
    p = make_product()
    with transaction():
        atualizar_fornecedor(p.supplier_id, {"nome": "Aurora Calçados"})
    assert db_session.get(Product, p.id).fornecedor_nome == "Aurora Calçados"


def test_nao_remove_fornecedor_com_produtos(db_session, make_product, make_supplier):
    p = make_product()
    with pytest.raises(ServiceError):
        with transaction():
            remover_fornecedor(p.supplier_id)

    vazio = make_supplier(nome="Sem Produtos")
    with transaction():
        remover_fornecedor(vazio.id)
    assert [f.nome for f in listar_fornecedores()] == ["Calçados Aurora"]


# ----------------------------
# Produtos
# ----------------------------

def test_criar_produto_copia_nome_do_fornecedor(db_session, make_supplier):
    f = make_supplier()
    with transaction():
        p = criar_produto("Bota Couro", f.id, preco_compra="80", preco_venda="159.90", cor="marrom", tamanho="38", stock=4)
    p = db_session.get(Product, p.id)
    assert p.fornecedor_nome == "Calçados Aurora"
    assert p.preco_venda == Decimal("159.90")


@pytest.mark.parametrize("kwargs", [
    {"nome": ""},
    {"supplier_id": 999},
    {"stock": -1},
    {"preco_venda": "-5"},
    {"preco_compra": "abc"},
])
def test_produto_invalido(db_session, make_supplier, kwargs):
    f = make_supplier()
    dados = {"nome": "Sapatilha", "supplier_id": f.id, "preco_compra": "10", "preco_venda": "20", "stock": 1}
    dados.update(kwargs)
    with pytest.raises(ValidationError):
        with transaction():
            criar_produto(**dados)


def test_trocar_fornecedor_atualiza_nome(db_session, make_product, make_supplier):
    p = make_product()
    outro = make_supplier(nome="Passo Firme")
    with transaction():
        atualizar_produto(p.id, {"supplier_id": outro.id, "stock": 999})
    p = db_session.get(Product, p.id)
    assert p.fornecedor_nome == "Passo Firme"
    assert p.stock == 10


def test_buscar_produtos(db_session, make_product):
    make_product(nome="Tênis Runner", cor="azul")
    make_product(nome="Sandália", cor="preto")
    assert [p.nome for p in buscar_produtos("AZUL")] == ["Tênis Runner"]
    assert len(buscar_produtos("aurora")) == 2


def test_nao_remove_produto_vendido(db_session, make_sale):
    sale = make_sale()
    pid = sale.itens[0].produto_id
    with pytest.raises(ServiceError, match="vendas"):
        with transaction():
            remover_produto(pid)
    assert db_session.get(Product, pid) is not None


# ----------------------------
# Custos
# ----------------------------

def test_custo_pago_recebe_data_de_pagamento(db_session):
    with transaction():
        c = criar_custo("Aluguel", "administrativo", "1200")
    c = db_session.get(Cost, c.id)
    assert c.status == "pago"
    assert c.data_pagamento is not None

    with transaction():
        alternar_status_custo(c.id)
    c = db_session.get(Cost, c.id)
    assert c.status == "pendente"
    assert c.data_pagamento is None


def test_custo_zero_e_permitido(db_session):
    with transaction():
        c = criar_custo("Brinde", "marketing", "0")
    assert db_session.get(Cost, c.id).valor == Decimal("0.00")


@pytest.mark.parametrize("categoria,valor", [
    ("viagem", "10"), ("marketing", ""), ("marketing", "-1"), ("marketing", "NaN"), ("marketing", "Infinity"),
])
def test_custo_invalido(db_session, categoria, valor):
    with pytest.raises(ValidationError):
        with transaction():
            criar_custo("Teste", categoria, valor)


def test_marcar_custos_vencidos(db_session):
    with transaction():
        atrasado = criar_custo("Frete", "logistica", "50", status="pendente", data_vencimento=datetime(2025, 1, 9))
        no_prazo = criar_custo("Energia", "operacional", "80", status="pendente", data_vencimento=datetime(2025, 1, 10))
        criar_custo("Internet", "operacional", "100", status="pago", data_vencimento=datetime(2025, 1, 1))

    with transaction():
        assert marcar_custos_vencidos(hoje=date(2025, 1, 10)) == 1

    assert db_session.get(Cost, atrasado.id).status == "vencido"
    assert db_session.get(Cost, no_prazo.id).status == "pendente"
    assert [c.descricao for c in listar_custos(categoria="logistica")] == ["Frete"]


# ----------------------------
# Metas
# ----------------------------

@pytest.mark.parametrize("kwargs", [
    {"titulo": ""},
    {"tipo": "clientes"},
    {"valor_alvo": "0"},
    {"data_fim": None},
    {"data_fim": datetime(2000, 1, 1)},
])
def test_meta_invalida(db_session, kwargs):
    dados = {"titulo": "Vender mais", "tipo": "receita", "valor_alvo": "5000", "data_fim": datetime.utcnow() + timedelta(days=30)}
    dados.update(kwargs)
    with pytest.raises(ValidationError):
        with transaction():
            criar_meta(**dados)


def test_arquivar_meta(db_session):
    with transaction():
        m = criar_meta("Reduzir custos", "custos", "800", datetime.utcnow() + timedelta(days=7))
    with transaction():
        arquivar_meta(m.id)
    assert db_session.get(Goal, m.id).status == "vencida"


def test_atualizar_progresso_metas(db_session, make_product, make_sale):
    inicio = datetime.utcnow() - timedelta(days=1)
    with transaction():
        m = criar_meta("Receita", "receita", "400", datetime.utcnow() + timedelta(days=7), data_inicio=inicio)
        pausada = criar_meta("Outra", "receita", "400", datetime.utcnow() + timedelta(days=7), data_inicio=inicio, status="pausada")

    p = make_product(stock=10)
    make_sale(produto=p, quantidade=2)
    make_sale(produto=p, quantidade=1, data_venda=datetime(2000, 1, 1))

    with transaction():
        atualizar_progresso_metas()

    m = db_session.get(Goal, m.id)
    assert m.valor_atual == Decimal("200.00")
    assert progresso_meta(m) == Decimal("50.0")
    assert db_session.get(Goal, pausada.id).valor_atual == Decimal("0.00")


# ----------------------------
# Usuários
# ----------------------------

def test_criar_usuario_normaliza_email(db_session):
    with transaction():
        u = criar_usuario("Joana", " Joana@Lazavii.com ", "segredo123")
    u = db_session.get(User, u.id)
    assert u.email == "joana@lazavii.com"
    assert u.role == "usuario"
    assert u.check_password("segredo123")

    with pytest.raises(ValidationError, match="já cadastrado"):
        with transaction():
            criar_usuario("Outra", "joana@lazavii.com", "segredo123")


def test_nao_desativa_o_proprio_usuario(db_session):
    with transaction():
        u = criar_usuario("Joana", "joana@lazavii.com", "segredo123", role="admin")
    with pytest.raises(ValidationError):
        with transaction():
            alternar_usuario(u.id, atual=u)
    with transaction():
        alternar_usuario(u.id)
    assert db_session.get(User, u.id).ativo is False


def test_autenticar(db_session):
    with transaction():
        u = criar_usuario("Joana", "joana@lazavii.com", "segredo123")
    with transaction():
        assert autenticar("JOANA@lazavii.com", "segredo123").id == u.id
    assert db_session.get(User, u.id).ultimo_login is not None
    assert autenticar("joana@lazavii.com", "errada") is None

    with transaction():
        alternar_usuario(u.id)
    assert autenticar("joana@lazavii.com", "segredo123") is None
