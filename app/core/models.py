# app/core/models.py
from __future__ import annotations

import os
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from sqlalchemy import (
    CheckConstraint, Column, Integer, String, DateTime, Text,
    Boolean, ForeignKey, Numeric, Enum, JSON, Index, func
)
from sqlalchemy.orm import relationship, backref, validates
from werkzeug.security import generate_password_hash as _wzh, check_password_hash as _wzc

from app.extensions import db  # type: ignore


# =============================================================================
# Utilidades e Mixins
# =============================================================================

MONEY = Numeric(12, 2)   # 999.999.999,99 máx

def _as_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

class TimestampMixin:
    criado_em = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    atualizado_em = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# =============================================================================
# Enums
# =============================================================================

ROLES = ("admin", "usuario")
STATUS_CADASTRO = ("ativo", "inativo")
METODOS_VENDA = ("dinheiro", "cartao", "pix", "transferencia", "fiado")
METODOS_CUSTO = ("dinheiro", "cartao", "pix", "transferencia", "boleto", "fiado")
STATUS_VENDA = ("concluida", "pendente", "pago", "cancelada")
STATUS_PAGAMENTO = ("pendente", "pago", "atrasado")
CATEGORIAS_CUSTO = ("operacional", "marketing", "administrativo", "logistica", "outros")
STATUS_CUSTO = ("pago", "pendente", "vencido")
TIPOS_META = ("receita", "vendas", "lucro", "custos")
STATUS_META = ("ativa", "concluida", "pausada", "vencida")
CATEGORIAS_INSIGHT = ("vendas", "custos", "produtos", "fornecedores", "geral")
PRIORIDADES = ("alta", "media", "baixa")

RoleEnum = Enum(*ROLES, name="role_enum")
CadastroStatusEnum = Enum(*STATUS_CADASTRO, name="cadastro_status_enum")
MetodoVendaEnum = Enum(*METODOS_VENDA, name="metodo_venda_enum")
MetodoCustoEnum = Enum(*METODOS_CUSTO, name="metodo_custo_enum")
SaleStatusEnum = Enum(*STATUS_VENDA, name="sale_status_enum")
PagamentoStatusEnum = Enum(*STATUS_PAGAMENTO, name="pagamento_status_enum")
CategoriaCustoEnum = Enum(*CATEGORIAS_CUSTO, name="categoria_custo_enum")
CustoStatusEnum = Enum(*STATUS_CUSTO, name="custo_status_enum")
TipoMetaEnum = Enum(*TIPOS_META, name="tipo_meta_enum")
MetaStatusEnum = Enum(*STATUS_META, name="meta_status_enum")
CategoriaInsightEnum = Enum(*CATEGORIAS_INSIGHT, name="categoria_insight_enum")
PrioridadeEnum = Enum(*PRIORIDADES, name="prioridade_enum")


# =============================================================================
# Usuários
# =============================================================================

class User(db.Model, UserMixin, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    nome = Column(String(120), nullable=False)
    email = Column(String(180), nullable=False, unique=True, index=True)
    _password_hash = Column("password_hash", String(255), nullable=False)
    role = Column(RoleEnum, nullable=False, default="usuario", index=True)
    ativo = Column(Boolean, default=True, nullable=False)
    ultimo_login = Column(DateTime, nullable=True)

    @property
    def is_active(self):
        return bool(self.ativo)

    def set_password(self, raw: str):
        if not raw or len(raw) < 6:
            raise ValueError("Senha muito curta")
        self._password_hash = _wzh(raw, method="pbkdf2:sha256", salt_length=16)

    def check_password(self, raw: str) -> bool:
        if not self._password_hash or not raw:
            return False
        return _wzc(self._password_hash, raw)

    @validates("email")
    def _val_email(self, key, value):
        if not value or "@" not in value:
            raise ValueError("Email inválido")
        return value.lower()

    def __repr__(self):
        return f"<User {self.id} {self.email} {self.role}>"


# =============================================================================
# Cadastros
# =============================================================================

class Supplier(db.Model, TimestampMixin):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    nome = Column(String(180), nullable=False)
    contato = Column(String(120), nullable=False)
    telefone = Column(String(40), nullable=False, default="")
    email = Column(String(180), nullable=False, default="")
    endereco = Column(String(255), nullable=False, default="")
    produtos_principais = Column(JSON, nullable=False, default=list)
    status = Column(CadastroStatusEnum, nullable=False, default="ativo", index=True)

    products = relationship("Product", back_populates="supplier", lazy="dynamic")

    @property
    def total_produtos(self) -> int:
        return self.products.count()

    def __repr__(self):
        return f"<Supplier {self.id} {self.nome}>"


class Product(db.Model, TimestampMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    nome = Column(String(200), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False, index=True)
    fornecedor_nome = Column(String(180), nullable=False, default="")
    preco_compra = Column(MONEY, default=Decimal("0.00"), nullable=False)
    preco_venda = Column(MONEY, default=Decimal("0.00"), nullable=False)
    cor = Column(String(60), nullable=False, default="")
    tamanho = Column(String(30), nullable=False, default="")
    stock = Column(Integer, default=0, nullable=False)
    foto_url = Column(String(255), nullable=True)
    status = Column(CadastroStatusEnum, nullable=False, default="ativo", index=True)

    supplier = relationship("Supplier", back_populates="products")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_nao_negativo"),
        CheckConstraint("preco_venda >= 0", name="ck_products_preco_nao_negativo"),
        CheckConstraint("preco_compra >= 0", name="ck_products_custo_nao_negativo"),
    )

    @validates("preco_venda", "preco_compra")
    def _val_money(self, key, value):
        return _as_money(value)

    def __repr__(self):
        return f"<Product {self.id} {self.nome} stock={self.stock}>"


# =============================================================================
# Vendas
# =============================================================================

class Sale(db.Model, TimestampMixin):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True)
    cliente = Column(String(180), nullable=False, default="")
    data_venda = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    data_pagamento = Column(DateTime, nullable=True)
    data_vencimento = Column(DateTime, nullable=True)
    metodo_pagamento = Column(MetodoVendaEnum, nullable=False)
    status_pagamento = Column(PagamentoStatusEnum, nullable=False, default="pago", index=True)
    status = Column(SaleStatusEnum, nullable=False, default="concluida", index=True)
    observacoes = Column(Text, nullable=True)
    desconto = Column(Numeric(5, 2), default=Decimal("0.00"), nullable=False)  # percentual
    subtotal = Column(MONEY, default=Decimal("0.00"), nullable=False)
    valor_desconto = Column(MONEY, default=Decimal("0.00"), nullable=False)
    preco_total = Column(MONEY, default=Decimal("0.00"), nullable=False)
    custo_total = Column(MONEY, default=Decimal("0.00"), nullable=False)
    lucro = Column(MONEY, default=Decimal("0.00"), nullable=False)

    itens = relationship(
        "SaleItem", cascade="all, delete-orphan", backref="sale",
        order_by="SaleItem.posicao",
    )

    __table_args__ = (
        CheckConstraint("desconto >= 0 AND desconto <= 100", name="ck_sales_desconto"),
        CheckConstraint("preco_total >= 0", name="ck_sales_preco_total"),
    )

    def __repr__(self):
        return f"<Sale {self.id} {self.cliente} total={self.preco_total}>"


class SaleItem(db.Model):
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    posicao = Column(Integer, nullable=False, default=0)
    produto_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    produto_nome = Column(String(200), nullable=False)
    fornecedor_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    fornecedor_nome = Column(String(180), nullable=False, default="")
    quantidade = Column(Integer, nullable=False)
    preco_unitario = Column(MONEY, nullable=False)
    custo_unitario = Column(MONEY, nullable=False)
    preco_total = Column(MONEY, nullable=False)
    custo_total = Column(MONEY, nullable=False)
    lucro = Column(MONEY, nullable=False)

    produto = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_sale_items_qtd"),
        CheckConstraint("preco_unitario >= 0", name="ck_sale_items_preco"),
        CheckConstraint("custo_unitario >= 0", name="ck_sale_items_custo"),
    )

    @validates("preco_unitario", "custo_unitario", "preco_total", "custo_total", "lucro")
    def _val_money(self, key, value):
        return _as_money(value)


class Reversal(db.Model):
    __tablename__ = "reversals"

    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="RESTRICT"), nullable=False, index=True)
    motivo = Column(String(200), nullable=False)
    valor = Column(MONEY, nullable=False)
    data_extorno = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    observacoes = Column(Text, nullable=True)
    criado_em = Column(DateTime, default=datetime.utcnow, nullable=False)

    sale = relationship("Sale", backref=backref("extornos", lazy="dynamic"))


# =============================================================================
# Financeiro
# =============================================================================

class Cost(db.Model, TimestampMixin):
    __tablename__ = "costs"

    id = Column(Integer, primary_key=True)
    descricao = Column(String(200), nullable=False)
    categoria = Column(CategoriaCustoEnum, nullable=False, index=True)
    valor = Column(MONEY, nullable=False)
    data = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    data_vencimento = Column(DateTime, nullable=True)
    data_pagamento = Column(DateTime, nullable=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    fornecedor_nome = Column(String(180), nullable=True)
    metodo_pagamento = Column(MetodoCustoEnum, nullable=False, default="dinheiro")
    observacoes = Column(Text, nullable=True)
    status = Column(CustoStatusEnum, nullable=False, default="pago", index=True)
    recorrente = Column(Boolean, nullable=False, default=False)

    supplier = relationship("Supplier")

    __table_args__ = (
        CheckConstraint("valor >= 0", name="ck_costs_valor"),
    )

    @validates("valor")
    def _val_money(self, key, value):
        return _as_money(value)


class Goal(db.Model, TimestampMixin):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True)
    titulo = Column(String(160), nullable=False)
    descricao = Column(Text, nullable=False, default="")
    tipo = Column(TipoMetaEnum, nullable=False)
    valor_alvo = Column(MONEY, nullable=False)
    valor_atual = Column(MONEY, nullable=False, default=Decimal("0.00"))
    data_inicio = Column(DateTime, nullable=False, default=datetime.utcnow)
    data_fim = Column(DateTime, nullable=False)
    status = Column(MetaStatusEnum, nullable=False, default="ativa", index=True)
    criada_por_ia = Column(Boolean, nullable=False, default=False)
    plano_ia = Column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("valor_alvo > 0", name="ck_goals_valor_alvo"),
    )

    @validates("valor_alvo", "valor_atual")
    def _val_money(self, key, value):
        return _as_money(value)


class Insight(db.Model):
    __tablename__ = "insights"

    id = Column(Integer, primary_key=True)
    titulo = Column(String(200), nullable=False)
    descricao = Column(Text, nullable=False, default="")
    categoria = Column(CategoriaInsightEnum, nullable=False, default="geral")
    prioridade = Column(PrioridadeEnum, nullable=False, default="media")
    acao = Column(Text, nullable=False, default="")
    ativo = Column(Boolean, nullable=False, default=True, index=True)
    criado_em = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    atualizado_em = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Log(db.Model):
    """Trilha de auditoria. Somente inserção."""
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True)
    usuario = Column(String(180), nullable=False, default="system")
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    acao = Column(String(60), nullable=False, index=True)
    detalhes = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = relationship("User")


# =============================================================================
# Índices
# =============================================================================

Index("ix_products_nome_lower", func.lower(Product.nome))
Index("ix_suppliers_nome_lower", func.lower(Supplier.nome))


# =============================================================================
# Seeds
# =============================================================================

def ensure_admin():
    """
    Cria o administrador inicial, se não existir nenhum usuário.
    Usa variáveis de ambiente ADMIN_EMAIL e ADMIN_PASS.
    """
    if User.query.count() > 0:
        return None
    admin_email = os.getenv("ADMIN_EMAIL", "admin@lazavii.com").lower()
    admin_pass = os.getenv("ADMIN_PASS", "admin123")

    user = User(nome="Administrador", email=admin_email, role="admin", ativo=True)
    user.set_password(admin_pass)
    db.session.add(user)
    db.session.commit()
    return user
