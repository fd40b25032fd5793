# app/core/services.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple, Dict, Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.extensions import db
from app.core import metrics
from app.core.models import (
    _as_money,
    User, Supplier, Product, Sale, SaleItem, Reversal,
    Cost, Goal, Insight, Log,
    ROLES, STATUS_CADASTRO, METODOS_VENDA, METODOS_CUSTO, CATEGORIAS_CUSTO, STATUS_CUSTO,
    TIPOS_META, STATUS_META, CATEGORIAS_INSIGHT, PRIORIDADES,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Exceções e utilidades
# =============================================================================

class ServiceError(Exception):
    pass

class ValidationError(ServiceError):
    pass

class EstoqueInsuficienteError(ServiceError):
    def __init__(self, produto: Product, solicitado: int):
        self.produto_id = produto.id
        self.disponivel = produto.stock
        self.solicitado = solicitado
        super().__init__(
            f"Estoque insuficiente para {produto.nome}: disponível {produto.stock}, solicitado {solicitado}"
        )

def _ensure(cond, msg: str):
    if not cond:
        raise ValidationError(msg)

def _money(value, campo: str = "Valor") -> Decimal:
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        d = _as_money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{campo}: valor numérico inválido")
    _ensure(d.is_finite(), f"{campo}: valor numérico inválido")
    return d

def como_inteiro(value, campo: str = "Quantidade") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{campo}: valor inteiro inválido")
    if isinstance(value, int):
        return value
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{campo}: valor inteiro inválido")
    if d != d.to_integral_value():
        raise ValidationError(f"{campo}: valor inteiro inválido")
    return int(d)

def _texto(value) -> str:
    return (value or "").strip()

def _nome_usuario(user: Optional[User]) -> str:
    if user is None or not getattr(user, "id", None):
        return "system"
    return user.nome or user.email

@contextmanager
def transaction():
    try:
        yield
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        logger.warning("Violação de integridade: %s", ie.orig)
        raise ServiceError(f"Violação de integridade: {ie.orig}") from ie
    except ServiceError:
        db.session.rollback()
        raise
    except Exception as e:
        db.session.rollback()
        logger.exception("Falha inesperada na transação")
        raise ServiceError(str(e)) from e

def registrar_log(acao: str, detalhes: str, user: Optional[User]) -> Log:
    log = Log(
        usuario=_nome_usuario(user),
        user_id=user.id if user is not None and getattr(user, "id", None) else None,
        acao=acao,
        detalhes=detalhes,
        timestamp=datetime.utcnow(),
    )
    db.session.add(log)
    return log

def listar_logs(acao: Optional[str] = None, limit: int = 500) -> List[Log]:
    query = Log.query
    if acao:
        query = query.filter(Log.acao == acao)
    return query.order_by(Log.timestamp.desc(), Log.id.desc()).limit(limit).all()

# =============================================================================
# Usuários
# =============================================================================

def _email_livre(email: str, exceto_id: Optional[int] = None) -> bool:
    query = User.query.filter(User.email == email)
    if exceto_id is not None:
        query = query.filter(User.id != exceto_id)
    return query.first() is None

def criar_usuario(nome: str, email: str, senha: str, role: str = "usuario", ativo: bool = True) -> User:
    email = _texto(email).lower()
    _ensure(_texto(nome), "Nome obrigatório")
    _ensure(email, "E-mail obrigatório")
    _ensure(role in ROLES, "Perfil inválido")
    _ensure(senha and len(senha) >= 6, "A senha deve ter ao menos 6 caracteres")
    _ensure(_email_livre(email), "E-mail já cadastrado")
    u = User(nome=_texto(nome), email=email, role=role, ativo=bool(ativo))
    u.set_password(senha)
    db.session.add(u)
    db.session.flush()
    logger.info("Usuário criado: %s (%s)", u.email, u.role)
    return u

def atualizar_usuario(user_id: int, dados: Dict[str, Any]) -> User:
    u = db.session.get(User, user_id)
    _ensure(u, "Usuário não encontrado")
    if "email" in dados:
        email = _texto(dados["email"]).lower()
        _ensure(email, "E-mail obrigatório")
        _ensure(_email_livre(email, exceto_id=u.id), "E-mail já cadastrado")
        u.email = email
    if "nome" in dados:
        _ensure(_texto(dados["nome"]), "Nome obrigatório")
        u.nome = _texto(dados["nome"])
    if "role" in dados:
        _ensure(dados["role"] in ROLES, "Perfil inválido")
        u.role = dados["role"]
    if "ativo" in dados:
        u.ativo = bool(dados["ativo"])
    if dados.get("nova_senha"):
        _ensure(len(dados["nova_senha"]) >= 6, "A senha deve ter ao menos 6 caracteres")
        u.set_password(dados["nova_senha"])
    return u

def autenticar(email: str, senha: str) -> Optional[User]:
    """Usuário ativo com essas credenciais (registra o último login) ou None."""
    email = _texto(email).lower()
    user = User.query.filter(User.email == email).first()
    if user is None or not user.ativo or not user.check_password(senha or ""):
        logger.warning("Falha de login para %s", email)
        return None
    user.ultimo_login = datetime.utcnow()
    return user

def alternar_usuario(user_id: int, atual: Optional[User] = None) -> User:
    u = db.session.get(User, user_id)
    _ensure(u, "Usuário não encontrado")
    _ensure(atual is None or u.id != atual.id, "Você não pode desativar o próprio usuário")
    u.ativo = not u.ativo
    logger.info("Usuário %s %s", u.email, "ativado" if u.ativo else "desativado")
    return u

# =============================================================================
# Fornecedores
# =============================================================================

def criar_fornecedor(
    nome: str,
    contato: str,
    telefone: Optional[str] = None,
    email: Optional[str] = None,
    endereco: Optional[str] = None,
    produtos_principais: Optional[List[str]] = None,
    status: str = "ativo",
) -> Supplier:
    _ensure(_texto(nome), "Nome do fornecedor obrigatório")
    _ensure(_texto(contato), "Contato do fornecedor obrigatório")
    _ensure(status in STATUS_CADASTRO, "Status inválido")
    f = Supplier(
        nome=_texto(nome),
        contato=_texto(contato),
        telefone=_texto(telefone),
        email=_texto(email).lower(),
        endereco=_texto(endereco),
        produtos_principais=[p.strip() for p in (produtos_principais or []) if p and p.strip()],
        status=status,
    )
    db.session.add(f)
    db.session.flush()
    logger.info("Fornecedor criado: %s (#%s)", f.nome, f.id)
    return f

def atualizar_fornecedor(supplier_id: int, dados: Dict[str, Any]) -> Supplier:
    f = db.session.get(Supplier, supplier_id)
    _ensure(f, "Fornecedor não encontrado")
    campos_editaveis = {"nome", "contato", "telefone", "email", "endereco", "produtos_principais", "status"}
    for k, v in dados.items():
        if k not in campos_editaveis:
            continue
        if k == "produtos_principais":
            v = [p.strip() for p in (v or []) if p and p.strip()]
        elif k == "status":
            _ensure(v in STATUS_CADASTRO, "Status inválido")
        else:
            v = _texto(v)
        setattr(f, k, v)
    _ensure(f.nome and f.contato, "Nome e contato são obrigatórios")

    # Renomear não reescreve vendas antigas, só o cadastro atual de produtos
    if "nome" in dados:
        for p in f.products:
            p.fornecedor_nome = f.nome
    return f

def remover_fornecedor(supplier_id: int) -> None:
    f = db.session.get(Supplier, supplier_id)
    _ensure(f, "Fornecedor não encontrado")
    _ensure(f.total_produtos == 0, "Fornecedor possui produtos cadastrados")
    db.session.delete(f)
    logger.info("Fornecedor removido: #%s", supplier_id)

def listar_fornecedores(q: Optional[str] = None) -> List[Supplier]:
    query = Supplier.query
    q = _texto(q).lower()
    if q:
        like = f"%{q}%"
        query = query.filter(or_(db.func.lower(Supplier.nome).like(like), db.func.lower(Supplier.contato).like(like)))
    return query.order_by(Supplier.nome.asc()).all()

# =============================================================================
# Produtos
# =============================================================================

def criar_produto(
    nome: str,
    supplier_id: int,
    preco_compra: Any = 0,
    preco_venda: Any = 0,
    cor: Optional[str] = None,
    tamanho: Optional[str] = None,
    stock: Any = 0,
    foto_url: Optional[str] = None,
    status: str = "ativo",
) -> Product:
    _ensure(_texto(nome), "Nome do produto obrigatório")
    f = db.session.get(Supplier, supplier_id) if supplier_id else None
    _ensure(f, "Fornecedor obrigatório")
    estoque = como_inteiro(stock or 0, "Estoque")
    _ensure(estoque >= 0, "Estoque não pode ser negativo")
    p = Product(
        nome=_texto(nome),
        supplier_id=f.id,
        fornecedor_nome=f.nome,
        preco_compra=_money(preco_compra, "Preço de compra"),
        preco_venda=_money(preco_venda, "Preço de venda"),
        cor=_texto(cor),
        tamanho=_texto(tamanho),
        stock=estoque,
        foto_url=_texto(foto_url) or None,
        status=status,
    )
    _ensure(p.preco_compra >= 0 and p.preco_venda >= 0, "Preços não podem ser negativos")
    db.session.add(p)
    db.session.flush()
    logger.info("Produto criado: %s (#%s)", p.nome, p.id)
    return p

def atualizar_produto(product_id: int, dados: Dict[str, Any]) -> Product:
    """Estoque não é editável aqui: use ajustar_estoque/comprar_estoque."""
    p = db.session.get(Product, product_id)
    _ensure(p, "Produto não encontrado")
    campos_editaveis = {"nome", "supplier_id", "preco_compra", "preco_venda", "cor", "tamanho", "foto_url", "status"}
    for k, v in dados.items():
        if k not in campos_editaveis:
            continue
        if k == "supplier_id":
            f = db.session.get(Supplier, v) if v else None
            _ensure(f, "Fornecedor obrigatório")
            p.supplier_id = f.id
            p.fornecedor_nome = f.nome
        elif k in {"preco_compra", "preco_venda"}:
            valor = _money(v, "Preço")
            _ensure(valor >= 0, "Preços não podem ser negativos")
            setattr(p, k, valor)
        elif k == "status":
            _ensure(v in STATUS_CADASTRO, "Status inválido")
            p.status = v
        elif k == "foto_url":
            p.foto_url = _texto(v) or None
        else:
            setattr(p, k, _texto(v))
    _ensure(p.nome, "Nome do produto obrigatório")
    return p

def remover_produto(product_id: int) -> None:
    p = db.session.get(Product, product_id)
    _ensure(p, "Produto não encontrado")
    vendido = db.session.query(SaleItem.id).filter_by(produto_id=p.id).first()
    _ensure(vendido is None, "Produto possui vendas registradas; inative-o")
    db.session.delete(p)
    logger.info("Produto removido: #%s", product_id)

def buscar_produtos(q: Optional[str] = None, apenas_ativos: bool = False, limit: int = 500) -> List[Product]:
    query = Product.query
    if apenas_ativos:
        query = query.filter(Product.status == "ativo")
    q = _texto(q).lower()
    if q:
        like = f"%{q}%"
        query = query.filter(
            or_(
                db.func.lower(Product.nome).like(like),
                db.func.lower(Product.cor).like(like),
                db.func.lower(Product.tamanho).like(like),
                db.func.lower(Product.fornecedor_nome).like(like),
            )
        )
    return query.order_by(Product.nome.asc()).limit(limit).all()

def produtos_do_fornecedor(supplier_id: int) -> List[Product]:
    return Product.query.filter_by(supplier_id=supplier_id).order_by(Product.nome.asc()).all()

# =============================================================================
# Estoque
# =============================================================================

def _produto_travado(product_id: int) -> Product:
    p = db.session.query(Product).filter_by(id=product_id).with_for_update().first()
    _ensure(p, "Produto não encontrado")
    return p

def definir_estoque(
    product_id: int,
    novo_estoque: Any,
    motivo: str,
    user: Optional[User],
    acao: str = "ajuste_estoque",
) -> Product:
    """Grava o estoque absoluto e registra uma linha de log com a variação."""
    motivo = _texto(motivo)
    _ensure(motivo, "Motivo obrigatório")
    novo = como_inteiro(novo_estoque, "Estoque")
    _ensure(novo >= 0, "Estoque não pode ficar negativo")
    p = _produto_travado(product_id)
    anterior = p.stock
    p.stock = novo
    registrar_log(
        acao,
        f"Estoque ajustado de {anterior} para {novo} unidades ({novo - anterior:+d}). "
        f"Motivo: {motivo}. Produto: {p.nome} (#{p.id})",
        user,
    )
    logger.info("Estoque de #%s: %s -> %s (%s)", p.id, anterior, novo, acao)
    return p

def ajustar_estoque(product_id: int, ajuste: Any, motivo: str, user: Optional[User]) -> Product:
    ajuste = como_inteiro(ajuste, "Ajuste")
    _ensure(ajuste != 0, "Digite um valor válido para o ajuste de estoque")
    _ensure(_texto(motivo), "Motivo obrigatório")
    p = _produto_travado(product_id)
    _ensure(p.stock + ajuste >= 0, "Ajuste deixaria o estoque negativo")
    return definir_estoque(p.id, p.stock + ajuste, motivo, user)

def comprar_estoque(
    product_id: int,
    quantidade: Any,
    custo_unitario: Any,
    motivo: str,
    user: Optional[User],
) -> Tuple[Product, Cost]:
    qtd = como_inteiro(quantidade)
    _ensure(qtd > 0, "Digite uma quantidade válida maior que zero")
    custo = _money(custo_unitario, "Custo")
    _ensure(custo > 0, "Digite um custo válido maior que zero")
    motivo = _texto(motivo)
    _ensure(motivo, "Motivo obrigatório")

    p = _produto_travado(product_id)
    definir_estoque(p.id, p.stock + qtd, motivo, user, acao="compra_estoque")
    agora = datetime.utcnow()
    c = Cost(
        descricao=f"Compra de estoque - {motivo}"[:200],
        categoria="operacional",
        valor=_as_money(custo * qtd),
        data=agora,
        data_pagamento=agora,
        supplier_id=p.supplier_id,
        fornecedor_nome=p.fornecedor_nome,
        metodo_pagamento="dinheiro",
        observacoes=f"Compra de {qtd} unidades",
        status="pago",
        recorrente=False,
    )
    db.session.add(c)
    return p, c

# =============================================================================
# Vendas
# =============================================================================

@dataclass
class ItemVendaDTO:
    produto_id: int
    quantidade: int
    preco_unitario: Optional[Decimal] = None  # se não vier, usa o preço do produto
    custo_unitario: Optional[Decimal] = None

TOLERANCIA = Decimal("0.01")

def calcular_totais(itens: Iterable[Any], desconto: Any = 0) -> Dict[str, Decimal]:
    itens = list(itens)
    desconto = _money(desconto or 0, "Desconto")
    subtotal = _as_money(sum((_as_money(i.preco_total) for i in itens), Decimal("0")))
    valor_desconto = _as_money(subtotal * desconto / Decimal("100"))
    preco_total = _as_money(subtotal - valor_desconto)
    custo_total = _as_money(sum((_as_money(i.custo_total) for i in itens), Decimal("0")))
    return {
        "subtotal": subtotal,
        "valor_desconto": valor_desconto,
        "preco_total": preco_total,
        "custo_total": custo_total,
        "lucro": _as_money(preco_total - custo_total),
    }

def conferir_totais(calculados: Dict[str, Decimal], informados: Dict[str, Any]) -> None:
    for campo in ("subtotal", "preco_total", "custo_total", "lucro"):
        if informados.get(campo) is None:
            continue
        valor = _money(informados[campo], campo)
        if abs(valor - calculados[campo]) > TOLERANCIA:
            raise ValidationError(
                f"Total divergente em {campo}: informado {valor}, calculado {calculados[campo]}"
            )

def criar_venda(
    itens: List[ItemVendaDTO],
    cliente: str,
    metodo_pagamento: str,
    data_venda: Optional[datetime] = None,
    observacoes: Optional[str] = None,
    desconto: Any = 0,
    data_vencimento: Optional[datetime] = None,
    totais_informados: Optional[Dict[str, Any]] = None,
    user: Optional[User] = None,
) -> Sale:
    """
    Valida todos os itens antes de baixar qualquer estoque e grava a venda.
    Deve rodar dentro de transaction(): qualquer falha desfaz tudo.
    """
    _ensure(itens, "Adicione pelo menos um produto à venda")
    _ensure(metodo_pagamento in METODOS_VENDA, "Método de pagamento inválido")
    desconto = _money(desconto or 0, "Desconto")
    _ensure(Decimal("0") <= desconto <= Decimal("100"), "Desconto deve estar entre 0 e 100%")

    requisitado: Dict[int, int] = {}
    for dto in itens:
        qtd = como_inteiro(dto.quantidade)
        _ensure(qtd > 0, "Quantidade deve ser positiva")
        requisitado[dto.produto_id] = requisitado.get(dto.produto_id, 0) + qtd

    ids = sorted(requisitado)
    produtos = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id).with_for_update().all()
    }
    for pid in ids:
        p = produtos.get(pid)
        _ensure(p, f"Produto {pid} não encontrado")
        if p.stock < requisitado[pid]:
            logger.warning("Estoque insuficiente: produto #%s disponível=%s solicitado=%s", pid, p.stock, requisitado[pid])
            raise EstoqueInsuficienteError(p, requisitado[pid])

    linhas: List[SaleItem] = []
    for posicao, dto in enumerate(itens):
        p = produtos[dto.produto_id]
        qtd = como_inteiro(dto.quantidade)
        preco_unit = _money(dto.preco_unitario, "Preço unitário") if dto.preco_unitario is not None else _as_money(p.preco_venda)
        custo_unit = _money(dto.custo_unitario, "Custo unitário") if dto.custo_unitario is not None else _as_money(p.preco_compra)
        _ensure(preco_unit >= 0 and custo_unit >= 0, "Preço e custo não podem ser negativos")
        preco_total = _as_money(preco_unit * qtd)
        custo_total = _as_money(custo_unit * qtd)
        linhas.append(SaleItem(
            posicao=posicao,
            produto_id=p.id,
            produto_nome=p.nome,
            fornecedor_id=p.supplier_id,
            fornecedor_nome=p.fornecedor_nome,
            quantidade=qtd,
            preco_unitario=preco_unit,
            custo_unitario=custo_unit,
            preco_total=preco_total,
            custo_total=custo_total,
            lucro=preco_total - custo_total,
        ))

    totais = calcular_totais(linhas, desconto)
    if totais_informados:
        conferir_totais(totais, totais_informados)

    for pid in ids:
        produtos[pid].stock -= requisitado[pid]

    fiado = metodo_pagamento == "fiado"
    sale = Sale(
        cliente=_texto(cliente),
        data_venda=data_venda or datetime.utcnow(),
        data_vencimento=data_vencimento,
        metodo_pagamento=metodo_pagamento,
        status_pagamento="pendente" if fiado else "pago",
        data_pagamento=None if fiado else datetime.utcnow(),
        status="concluida",
        observacoes=_texto(observacoes) or None,
        desconto=desconto,
        itens=linhas,
        **totais,
    )
    db.session.add(sale)
    db.session.flush()
    logger.info("Venda #%s registrada: %s itens, total %s", sale.id, len(linhas), sale.preco_total)
    return sale

def confirmar_pagamento(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    _ensure(sale, "Venda não encontrada")
    _ensure(sale.status != "cancelada", "Venda cancelada")
    _ensure(sale.status_pagamento != "pago", "Pagamento já confirmado")
    sale.status_pagamento = "pago"
    sale.data_pagamento = datetime.utcnow()
    return sale

def atualizar_venda(sale_id: int, dados: Dict[str, Any]) -> Sale:
    """Somente campos descritivos; itens e totais ficam como foram gravados."""
    sale = db.session.get(Sale, sale_id)
    _ensure(sale, "Venda não encontrada")
    imutaveis = {"itens", "desconto", "subtotal", "valor_desconto", "preco_total", "custo_total", "lucro", "metodo_pagamento"}
    _ensure(not (imutaveis & set(dados)), "Itens, pagamento e totais da venda não podem ser alterados")
    for k, v in dados.items():
        if k in ("cliente", "observacoes"):
            setattr(sale, k, _texto(v) or (None if k == "observacoes" else ""))
        elif k == "data_venda":
            _ensure(v, "Data da venda obrigatória")
            sale.data_venda = v
        elif k == "data_vencimento":
            sale.data_vencimento = v or None
    return sale

def estornar_venda(sale_id: int, motivo: str, user: Optional[User], observacoes: Optional[str] = None) -> Reversal:
    motivo = _texto(motivo)
    _ensure(motivo, "Motivo do estorno obrigatório")
    sale = db.session.get(Sale, sale_id)
    _ensure(sale, "Venda não encontrada")
    _ensure(sale.status != "cancelada", "Venda já estornada")

    ids = sorted({i.produto_id for i in sale.itens})
    produtos = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id).with_for_update().all()
    }
    for item in sale.itens:
        p = produtos.get(item.produto_id)
        if p is not None:
            p.stock += item.quantidade

    sale.status = "cancelada"
    ext = Reversal(
        sale_id=sale.id,
        motivo=motivo[:200],
        valor=_as_money(sale.preco_total),
        data_extorno=datetime.utcnow(),
        observacoes=_texto(observacoes) or None,
    )
    db.session.add(ext)
    registrar_log(
        "estorno_venda",
        f"Venda #{sale.id} estornada ({len(sale.itens)} itens devolvidos ao estoque). Motivo: {motivo}",
        user,
    )
    logger.info("Venda #%s estornada", sale.id)
    return ext

def listar_vendas(q: Optional[str] = None, limit: int = 500) -> List[Sale]:
    query = Sale.query.options(selectinload(Sale.itens))
    q = _texto(q).lower()
    if q:
        like = f"%{q}%"
        query = query.filter(
            or_(
                db.func.lower(Sale.cliente).like(like),
                Sale.itens.any(db.func.lower(SaleItem.produto_nome).like(like)),
                Sale.itens.any(db.func.lower(SaleItem.fornecedor_nome).like(like)),
            )
        )
    return query.order_by(Sale.data_venda.desc(), Sale.id.desc()).limit(limit).all()

def listar_extornos(limit: int = 500) -> List[Reversal]:
    return Reversal.query.order_by(Reversal.data_extorno.desc()).limit(limit).all()

# =============================================================================
# Custos
# =============================================================================

def criar_custo(
    descricao: str,
    categoria: str,
    valor: Any,
    data: Optional[datetime] = None,
    data_vencimento: Optional[datetime] = None,
    data_pagamento: Optional[datetime] = None,
    supplier_id: Optional[int] = None,
    metodo_pagamento: str = "dinheiro",
    observacoes: Optional[str] = None,
    status: str = "pago",
    recorrente: bool = False,
) -> Cost:
    _ensure(_texto(descricao), "Descrição obrigatória")
    _ensure(categoria in CATEGORIAS_CUSTO, "Categoria inválida")
    _ensure(valor is not None and valor != "", "Valor obrigatório")
    valor = _money(valor)
    _ensure(valor >= 0, "Valor não pode ser negativo")
    _ensure(metodo_pagamento in METODOS_CUSTO, "Método de pagamento inválido")
    _ensure(status in STATUS_CUSTO, "Status inválido")
    fornecedor = db.session.get(Supplier, supplier_id) if supplier_id else None
    c = Cost(
        descricao=_texto(descricao),
        categoria=categoria,
        valor=valor,
        data=data or datetime.utcnow(),
        data_vencimento=data_vencimento,
        data_pagamento=data_pagamento or (datetime.utcnow() if status == "pago" else None),
        supplier_id=fornecedor.id if fornecedor else None,
        fornecedor_nome=fornecedor.nome if fornecedor else None,
        metodo_pagamento=metodo_pagamento,
        observacoes=_texto(observacoes) or None,
        status=status,
        recorrente=bool(recorrente),
    )
    db.session.add(c)
    db.session.flush()
    logger.info("Custo #%s criado: %s %s", c.id, c.categoria, c.valor)
    return c

def atualizar_custo(cost_id: int, dados: Dict[str, Any]) -> Cost:
    c = db.session.get(Cost, cost_id)
    _ensure(c, "Custo não encontrado")
    for k, v in dados.items():
        if k == "descricao":
            _ensure(_texto(v), "Descrição obrigatória")
            c.descricao = _texto(v)
        elif k == "categoria":
            _ensure(v in CATEGORIAS_CUSTO, "Categoria inválida")
            c.categoria = v
        elif k == "valor":
            valor = _money(v)
            _ensure(valor >= 0, "Valor não pode ser negativo")
            c.valor = valor
        elif k == "metodo_pagamento":
            _ensure(v in METODOS_CUSTO, "Método de pagamento inválido")
            c.metodo_pagamento = v
        elif k == "status":
            _ensure(v in STATUS_CUSTO, "Status inválido")
            c.status = v
        elif k == "supplier_id":
            fornecedor = db.session.get(Supplier, v) if v else None
            c.supplier_id = fornecedor.id if fornecedor else None
            c.fornecedor_nome = fornecedor.nome if fornecedor else None
        elif k in ("data", "data_vencimento", "data_pagamento"):
            if k == "data":
                _ensure(v, "Data obrigatória")
            setattr(c, k, v or None)
        elif k == "observacoes":
            c.observacoes = _texto(v) or None
        elif k == "recorrente":
            c.recorrente = bool(v)
    return c

def remover_custo(cost_id: int) -> None:
    c = db.session.get(Cost, cost_id)
    _ensure(c, "Custo não encontrado")
    db.session.delete(c)

def alternar_status_custo(cost_id: int) -> Cost:
    c = db.session.get(Cost, cost_id)
    _ensure(c, "Custo não encontrado")
    if c.status == "pago":
        c.status = "pendente"
        c.data_pagamento = None
    else:
        c.status = "pago"
        c.data_pagamento = datetime.utcnow()
    return c

def marcar_custos_vencidos(hoje: Optional[date] = None) -> int:
    hoje = hoje or datetime.utcnow().date()
    limite = datetime(hoje.year, hoje.month, hoje.day)
    pendentes = Cost.query.filter(
        Cost.status == "pendente",
        Cost.data_vencimento.isnot(None),
        Cost.data_vencimento < limite,
    ).all()
    for c in pendentes:
        c.status = "vencido"
    if pendentes:
        logger.info("%s custos marcados como vencidos", len(pendentes))
    return len(pendentes)

def listar_custos(categoria: Optional[str] = None, q: Optional[str] = None) -> List[Cost]:
    query = Cost.query
    if categoria:
        query = query.filter(Cost.categoria == categoria)
    q = _texto(q).lower()
    if q:
        query = query.filter(db.func.lower(Cost.descricao).like(f"%{q}%"))
    return query.order_by(Cost.data.desc(), Cost.id.desc()).all()

# =============================================================================
# Metas
# =============================================================================

def criar_meta(
    titulo: str,
    tipo: str,
    valor_alvo: Any,
    data_fim: Optional[datetime],
    descricao: Optional[str] = None,
    data_inicio: Optional[datetime] = None,
    status: str = "ativa",
    criada_por_ia: bool = False,
) -> Goal:
    _ensure(_texto(titulo), "Título obrigatório")
    _ensure(tipo in TIPOS_META, "Tipo de meta inválido")
    _ensure(valor_alvo is not None and valor_alvo != "", "Valor alvo obrigatório")
    alvo = _money(valor_alvo, "Valor alvo")
    _ensure(alvo > 0, "Valor alvo deve ser maior que zero")
    _ensure(data_fim, "Data final obrigatória")
    inicio = data_inicio or datetime.utcnow()
    _ensure(data_fim >= inicio.replace(hour=0, minute=0, second=0, microsecond=0), "Data final anterior ao início")
    _ensure(status in STATUS_META, "Status inválido")
    m = Goal(
        titulo=_texto(titulo),
        descricao=_texto(descricao),
        tipo=tipo,
        valor_alvo=alvo,
        valor_atual=Decimal("0.00"),
        data_inicio=inicio,
        data_fim=data_fim,
        status=status,
        criada_por_ia=bool(criada_por_ia),
    )
    db.session.add(m)
    db.session.flush()
    logger.info("Meta #%s criada: %s", m.id, m.titulo)
    return m

def atualizar_meta(goal_id: int, dados: Dict[str, Any]) -> Goal:
    m = db.session.get(Goal, goal_id)
    _ensure(m, "Meta não encontrada")
    for k, v in dados.items():
        if k == "titulo":
            _ensure(_texto(v), "Título obrigatório")
            m.titulo = _texto(v)
        elif k == "descricao":
            m.descricao = _texto(v)
        elif k == "tipo":
            _ensure(v in TIPOS_META, "Tipo de meta inválido")
            m.tipo = v
        elif k == "valor_alvo":
            alvo = _money(v, "Valor alvo")
            _ensure(alvo > 0, "Valor alvo deve ser maior que zero")
            m.valor_alvo = alvo
        elif k == "data_fim":
            _ensure(v, "Data final obrigatória")
            m.data_fim = v
        elif k == "status":
            _ensure(v in STATUS_META, "Status inválido")
            m.status = v
    return m

def arquivar_meta(goal_id: int) -> Goal:
    """Metas não são apagadas: ficam com status 'vencida'."""
    return atualizar_meta(goal_id, {"status": "vencida"})

def salvar_plano_meta(goal_id: int, plano: Dict[str, Any]) -> Goal:
    m = db.session.get(Goal, goal_id)
    _ensure(m, "Meta não encontrada")
    _ensure(plano, "Plano vazio")
    m.plano_ia = metrics.to_json(plano)
    return m

def listar_metas() -> List[Goal]:
    return Goal.query.order_by(Goal.criado_em.desc(), Goal.id.desc()).all()

def atualizar_progresso_metas(vendas: Optional[List[Sale]] = None, custos: Optional[List[Cost]] = None) -> List[Goal]:
    if vendas is None or custos is None:
        dados = carregar_dados_negocio()
        vendas, custos = dados["vendas"], dados["custos"]
    ativas = Goal.query.filter(Goal.status == "ativa").all()
    for m in ativas:
        m.valor_atual = metrics.valor_atual_meta(m, vendas, custos)
    return ativas

# =============================================================================
# Insights
# =============================================================================

def listar_insights(apenas_ativos: bool = True) -> List[Insight]:
    query = Insight.query
    if apenas_ativos:
        query = query.filter(Insight.ativo.is_(True))
    return query.order_by(Insight.criado_em.desc(), Insight.id.desc()).all()

def substituir_insights(novos: List[Dict[str, Any]]) -> List[Insight]:
    """Desativa os insights ativos (sem apagar) e grava os novos."""
    _ensure(novos, "Nenhum insight para gravar")
    anteriores = Insight.query.filter(Insight.ativo.is_(True)).all()
    for ins in anteriores:
        ins.ativo = False
    criados = []
    for dados in novos:
        ins = Insight(
            titulo=_texto(dados.get("titulo"))[:200],
            descricao=_texto(dados.get("descricao")),
            categoria=dados.get("categoria") if dados.get("categoria") in CATEGORIAS_INSIGHT else "geral",
            prioridade=dados.get("prioridade") if dados.get("prioridade") in PRIORIDADES else "media",
            acao=_texto(dados.get("acao")),
            ativo=True,
        )
        _ensure(ins.titulo, "Insight sem título")
        db.session.add(ins)
        criados.append(ins)
    db.session.flush()
    logger.info("%s insights desativados, %s criados", len(anteriores), len(criados))
    return criados

# =============================================================================
# Dashboard
# =============================================================================

def carregar_dados_negocio() -> Dict[str, Any]:
    return {
        "vendas": Sale.query.options(selectinload(Sale.itens)).order_by(Sale.data_venda.desc()).all(),
        "custos": Cost.query.order_by(Cost.data.desc()).all(),
        "fornecedores": Supplier.query.order_by(Supplier.nome).all(),
        "produtos": Product.query.order_by(Product.nome).all(),
        "metas": listar_metas(),
    }

def carregar_dashboard(inicio=None, fim=None) -> Dict[str, Any]:
    dados = carregar_dados_negocio()
    return metrics.montar_dashboard(dados["vendas"], dados["custos"], inicio, fim, dados["metas"])
