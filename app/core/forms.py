# app/core/forms.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from flask_wtf import FlaskForm
from flask_wtf.file import FileField
from wtforms import (
    Form, StringField, PasswordField, BooleanField, IntegerField,
    SelectField, DateField, TextAreaField, SubmitField, FieldList, FormField
)
from wtforms.validators import (
    DataRequired, InputRequired, Optional as Opt, Length, NumberRange, Email
)

from app.core.models import (
    METODOS_VENDA, METODOS_CUSTO, CATEGORIAS_CUSTO, STATUS_CUSTO,
    TIPOS_META, STATUS_META,
)


# =============================================================================
# Utilidades
# =============================================================================

def _choices(valores, rotulos=None):
    rotulos = rotulos or {}
    return [(v, rotulos.get(v, v.capitalize())) for v in valores]

METODO_VENDA_CHOICES = _choices(METODOS_VENDA, {"cartao": "Cartão", "pix": "PIX", "transferencia": "Transferência"})
METODO_CUSTO_CHOICES = _choices(METODOS_CUSTO, {"cartao": "Cartão", "pix": "PIX", "transferencia": "Transferência"})
CATEGORIA_CUSTO_CHOICES = _choices(CATEGORIAS_CUSTO, {"logistica": "Logística"})
STATUS_CUSTO_CHOICES = _choices(STATUS_CUSTO)
TIPO_META_CHOICES = _choices(TIPOS_META)
STATUS_META_CHOICES = _choices(STATUS_META, {"concluida": "Concluída"})
STATUS_CADASTRO_CHOICES = [("ativo", "Ativo"), ("inativo", "Inativo")]

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def parse_decimal(text: Optional[str]) -> Optional[Decimal]:
    """
    Converte string para Decimal aceitando vírgula ou ponto ("1.234,56" ou "1234.56").
    Vazio vira None.
    """
    if text is None:
        return None
    s = text.strip()
    if s == "":
        return None
    s = s.replace(".", "").replace(",", ".") if s.count(",") == 1 and s.count(".") > 0 else s.replace(",", ".")
    try:
        d = Decimal(s)
        if not d.is_finite():
            raise InvalidOperation(s)
        return _q2(d)
    except InvalidOperation:
        raise ValueError("Valor numérico inválido")

def split_lista(text: Optional[str]):
    return [p.strip() for p in (text or "").split(",") if p.strip()]


# =============================================================================
# Campos customizados
# =============================================================================

from wtforms.fields.core import Field

class DecimalMoneyField(Field):
    """
    Entrada textual que vira Decimal com 2 casas.
    """
    def _value(self):
        return str(self.data) if isinstance(self.data, Decimal) else (self.data or "")

    def process_formdata(self, valuelist):
        if valuelist:
            self.data = parse_decimal(valuelist[0])


# =============================================================================
# Autenticação e usuários
# =============================================================================

class LoginForm(FlaskForm):
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    password = PasswordField("Senha", validators=[DataRequired(), Length(min=6, max=72)])
    remember = BooleanField("Manter conectado")
    submit = SubmitField("Entrar")

class UserCreateForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    role = SelectField("Perfil", choices=[("admin", "Administrador"), ("usuario", "Usuário")], validators=[DataRequired()])
    senha = PasswordField("Senha", validators=[DataRequired(), Length(min=6, max=72)])
    ativo = BooleanField("Ativo", default=True)
    submit = SubmitField("Criar")

class UserEditForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    role = SelectField("Perfil", choices=[("admin", "Administrador"), ("usuario", "Usuário")], validators=[DataRequired()])
    nova_senha = PasswordField("Nova senha", validators=[Opt(), Length(min=6, max=72)])
    ativo = BooleanField("Ativo", default=True)
    submit = SubmitField("Salvar")


# =============================================================================
# Cadastros
# =============================================================================

class SupplierForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=180)])
    contato = StringField("Contato", validators=[DataRequired(), Length(max=120)])
    telefone = StringField("Telefone", validators=[Opt(), Length(max=40)])
    email = StringField("E-mail", validators=[Opt(), Email(), Length(max=180)])
    endereco = StringField("Endereço", validators=[Opt(), Length(max=255)])
    produtos_principais = StringField("Produtos principais (separados por vírgula)", validators=[Opt()])
    status = SelectField("Status", choices=STATUS_CADASTRO_CHOICES, default="ativo")
    submit = SubmitField("Salvar")

class ProductForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=200)])
    supplier_id = SelectField("Fornecedor", choices=[], coerce=int, validators=[DataRequired(message="Selecione o fornecedor")])
    preco_compra = DecimalMoneyField("Preço de compra", validators=[Opt()])
    preco_venda = DecimalMoneyField("Preço de venda", validators=[Opt()])
    cor = StringField("Cor", validators=[Opt(), Length(max=60)])
    tamanho = StringField("Tamanho", validators=[Opt(), Length(max=30)])
    stock = IntegerField("Estoque inicial", validators=[Opt(), NumberRange(min=0)], default=0)
    foto = FileField("Foto")
    status = SelectField("Status", choices=STATUS_CADASTRO_CHOICES, default="ativo")
    submit = SubmitField("Salvar")

    def validate_preco_venda(self, field):
        if field.data is not None and field.data < 0:
            raise ValueError("Preço inválido")


# =============================================================================
# Estoque
# =============================================================================

class StockAdjustForm(FlaskForm):
    ajuste = IntegerField("Ajuste (+/-)", validators=[InputRequired()])
    motivo = StringField("Motivo", validators=[DataRequired(message="Informe o motivo"), Length(max=200)])
    submit = SubmitField("Aplicar ajuste")

    def validate_ajuste(self, field):
        if field.data == 0:
            raise ValueError("Digite um valor válido para o ajuste de estoque")

class StockPurchaseForm(FlaskForm):
    product_id = SelectField("Produto", coerce=int, validators=[DataRequired()])
    quantidade = IntegerField("Quantidade", validators=[InputRequired(), NumberRange(min=1)])
    custo_unitario = DecimalMoneyField("Custo unitário", validators=[DataRequired()])
    motivo = StringField("Motivo", validators=[DataRequired(message="Informe o motivo"), Length(max=150)])
    submit = SubmitField("Registrar compra")

    def validate_custo_unitario(self, field):
        if field.data is None or field.data <= 0:
            raise ValueError("Digite um custo válido maior que zero")


# =============================================================================
# Vendas
# =============================================================================

class SaleItemInlineForm(Form):
    # Form simples: CSRF fica só no formulário pai
    produto_id = IntegerField("Produto", validators=[DataRequired(message="Selecione o produto")])
    quantidade = IntegerField("Qtd", validators=[InputRequired(), NumberRange(min=1)])
    preco_unitario = DecimalMoneyField("Preço", validators=[Opt()])

class SaleForm(FlaskForm):
    cliente = StringField("Cliente", validators=[Opt(), Length(max=180)])
    data_venda = DateField("Data da venda", validators=[Opt()])
    metodo_pagamento = SelectField("Pagamento", choices=METODO_VENDA_CHOICES, validators=[DataRequired()])
    data_vencimento = DateField("Vencimento (fiado)", validators=[Opt()])
    desconto = DecimalMoneyField("Desconto %", validators=[Opt()])
    observacoes = TextAreaField("Observações", validators=[Opt()])
    itens = FieldList(FormField(SaleItemInlineForm), min_entries=1)
    submit = SubmitField("Registrar venda")

    def validate_itens(self, field):
        if not field.entries:
            raise ValueError("Adicione pelo menos um produto à venda")

    def validate_desconto(self, field):
        if field.data is not None and not (Decimal("0") <= field.data <= Decimal("100")):
            raise ValueError("Desconto deve estar entre 0 e 100%")

class SaleEditForm(FlaskForm):
    cliente = StringField("Cliente", validators=[Opt(), Length(max=180)])
    data_venda = DateField("Data da venda", validators=[DataRequired()])
    data_vencimento = DateField("Vencimento", validators=[Opt()])
    observacoes = TextAreaField("Observações", validators=[Opt()])
    submit = SubmitField("Salvar")

class ReversalForm(FlaskForm):
    motivo = StringField("Motivo", validators=[DataRequired(message="Informe o motivo"), Length(max=200)])
    observacoes = TextAreaField("Observações", validators=[Opt()])
    submit = SubmitField("Estornar venda")


# =============================================================================
# Custos e metas
# =============================================================================

class CostForm(FlaskForm):
    descricao = StringField("Descrição", validators=[DataRequired(), Length(max=200)])
    categoria = SelectField("Categoria", choices=CATEGORIA_CUSTO_CHOICES, validators=[DataRequired()])
    valor = DecimalMoneyField("Valor", validators=[InputRequired(message="Informe o valor")])
    data = DateField("Data", validators=[Opt()])
    data_vencimento = DateField("Vencimento", validators=[Opt()])
    supplier_id = SelectField("Fornecedor", coerce=int, choices=[], validators=[Opt()])
    metodo_pagamento = SelectField("Pagamento", choices=METODO_CUSTO_CHOICES, default="dinheiro")
    status = SelectField("Status", choices=STATUS_CUSTO_CHOICES, default="pago")
    recorrente = BooleanField("Recorrente")
    observacoes = TextAreaField("Observações", validators=[Opt()])
    submit = SubmitField("Salvar")

    def validate_valor(self, field):
        if field.data is None or field.data < 0:
            raise ValueError("Valor inválido")

class GoalForm(FlaskForm):
    titulo = StringField("Título", validators=[DataRequired(), Length(max=160)])
    descricao = TextAreaField("Descrição", validators=[Opt()])
    tipo = SelectField("Tipo", choices=TIPO_META_CHOICES, validators=[DataRequired()])
    valor_alvo = DecimalMoneyField("Valor alvo", validators=[DataRequired(message="Informe o valor alvo")])
    data_fim = DateField("Data final", validators=[DataRequired()])
    status = SelectField("Status", choices=STATUS_META_CHOICES, default="ativa")
    submit = SubmitField("Salvar")

    def validate_valor_alvo(self, field):
        if field.data is None or field.data <= 0:
            raise ValueError("Valor alvo deve ser maior que zero")


# =============================================================================
# Relatórios
# =============================================================================

class DateRangeForm(FlaskForm):
    class Meta:
        csrf = False

    inicio = DateField("De", validators=[Opt()])
    fim = DateField("Até", validators=[Opt()])
    submit = SubmitField("Filtrar")

