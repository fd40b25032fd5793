# app/core/ai.py
"""
Consultoria por IA (Google Gemini).

Toda chamada é opcional: sem chave, com erro de rede, status != 2xx ou
resposta sem JSON, as funções devolvem None/[] e registram um aviso.
Não há nova tentativa automática.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import requests
from flask import current_app

from app.core import metrics
from app.core.models import CATEGORIAS_INSIGHT, PRIORIDADES

logger = logging.getLogger(__name__)

CATEGORIAS_ESTRATEGIA = ("marketing", "vendas", "produtos", "fornecedores", "custos", "operacional")
IMPACTOS = ("alto", "medio", "baixo")
FREQUENCIAS = ("diaria", "semanal", "mensal")


class GeminiClient:
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    GENERATION_CONFIG = {
        "temperature": 0.7,
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": 2048,
    }

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash-exp", timeout: float = 30):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> "GeminiClient":
        cfg = current_app.config
        return cls(
            api_key=cfg.get("GEMINI_API_KEY", ""),
            model=cfg.get("GEMINI_MODEL", "gemini-2.0-flash-exp"),
            timeout=cfg.get("GEMINI_TIMEOUT", 30),
        )

    @property
    def configurado(self) -> bool:
        return bool(self.api_key)

    def gerar(self, prompt: str, generation_config: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Envia o prompt e devolve o texto do primeiro candidato, ou None.
        """
        if not self.configurado:
            logger.warning("GEMINI_API_KEY não configurada; recurso de IA indisponível")
            return None

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": generation_config or self.GENERATION_CONFIG,
        }
        try:
            response = requests.post(
                f"{self.BASE_URL}/{self.model}:generateContent",
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.warning("Timeout na API do Gemini (%ss)", self.timeout)
            return None
        except requests.exceptions.RequestException as e:
            logger.warning("Erro de rede na API do Gemini: %s", e)
            return None

        if not 200 <= response.status_code < 300:
            logger.warning("Erro na API do Gemini: status %s", response.status_code)
            return None

        try:
            data = response.json()
            texto = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Resposta vazia ou inesperada da API do Gemini")
            return None
        if not texto or not texto.strip():
            logger.warning("Resposta vazia da API do Gemini")
            return None
        return texto


# =============================================================================
# Extração de JSON
# =============================================================================

def _objetos_balanceados(texto: str):
    inicio = texto.find("{")
    while inicio != -1:
        nivel = 0
        em_string = False
        escape = False
        for i in range(inicio, len(texto)):
            ch = texto[i]
            if em_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    em_string = False
                continue
            if ch == '"':
                em_string = True
            elif ch == "{":
                nivel += 1
            elif ch == "}":
                nivel -= 1
                if nivel == 0:
                    yield texto[inicio:i + 1]
                    break
        inicio = texto.find("{", inicio + 1)

def extrair_json(texto: Optional[str]) -> Optional[Dict[str, Any]]:
    """Primeiro objeto JSON válido dentro de um texto livre (ex.: bloco ```json)."""
    if not texto:
        return None
    for candidato in _objetos_balanceados(texto):
        try:
            obj = json.loads(candidato)
        except ValueError:
            continue
        if isinstance(obj, dict):
            return obj

    m = re.search(r"\{[\s\S]*\}", texto)
    if m:
        try:
            obj = json.loads(m.group(0))
            if isinstance(obj, dict):
                return obj
        except ValueError:
            pass
    return None


# =============================================================================
# Resumos para os prompts
# =============================================================================

def _fmt(valor) -> str:
    return f"{Decimal(valor or 0):.2f}"

def _receita_por_mes(vendas: Sequence[Any]) -> Dict[str, float]:
    return {mes: float(e["receita"]) for mes, e in metrics.vendas_por_mes(vendas).items()}

def _mais_vendidos(vendas: Sequence[Any]) -> Dict[str, int]:
    return {e["produto"]: e["vendas"] for e in metrics.produtos_mais_vendidos(vendas, limite=10)}

def _coagir(valor, opcoes, padrao):
    valor = (valor or "").strip().lower() if isinstance(valor, str) else valor
    return valor if valor in opcoes else padrao


# =============================================================================
# Insights
# =============================================================================

PROMPT_INSIGHTS = """Você é um consultor especializado em negócios de calçados. Analise os dados fornecidos e gere insights práticos e acionáveis.

DADOS DO NEGÓCIO:
- Total de Vendas: {total_vendas}
- Receita Bruta: R$ {receita}
- Custos Operacionais: R$ {custos}
- Lucro Líquido: R$ {lucro}
- Número de Fornecedores: {fornecedores}
- Vendas por Mês: {por_mes}
- Produtos Mais Vendidos: {mais_vendidos}

Gere 5-6 insights específicos, práticos e acionáveis para melhorar o negócio. Para cada insight, forneça:
- titulo: Título curto e direto
- descricao: Descrição detalhada do insight
- categoria: vendas/custos/produtos/fornecedores/geral
- prioridade: alta/media/baixa
- acao: Ação específica a ser tomada

Responda APENAS com um JSON válido no seguinte formato:
{{
  "insights": [
    {{
      "titulo": "Aumentar Margem de Lucro",
      "descricao": "Sua margem de lucro está baixa. Foque em produtos premium.",
      "categoria": "vendas",
      "prioridade": "alta",
      "acao": "Negociar descontos por volume com fornecedores"
    }}
  ]
}}"""

def validar_insights(dados: Optional[Dict[str, Any]]) -> List[Dict[str, str]]:
    if not dados or not isinstance(dados.get("insights"), list):
        return []
    validos = []
    for item in dados["insights"]:
        if not isinstance(item, dict):
            continue
        titulo = str(item.get("titulo") or "").strip()
        if not titulo:
            continue
        validos.append({
            "titulo": titulo,
            "descricao": str(item.get("descricao") or "").strip(),
            "categoria": _coagir(item.get("categoria"), CATEGORIAS_INSIGHT, "geral"),
            "prioridade": _coagir(item.get("prioridade"), PRIORIDADES, "media"),
            "acao": str(item.get("acao") or "").strip(),
        })
    return validos

def gerar_insights_ia(dashboard: Dict[str, Any], vendas: Sequence[Any], client: Optional[GeminiClient] = None):
    """
    Gera e grava os insights. Desativa os anteriores na mesma transação.
    Devolve os Insight criados ou [] se a IA não respondeu algo utilizável.
    """
    from app.core.services import transaction, substituir_insights

    client = client or GeminiClient.from_config()
    prompt = PROMPT_INSIGHTS.format(
        total_vendas=dashboard.get("total_vendas", len(vendas)),
        receita=_fmt(dashboard.get("receita_bruta")),
        custos=_fmt(dashboard.get("custos_operacionais")),
        lucro=_fmt(dashboard.get("lucro_liquido")),
        fornecedores=len(dashboard.get("fornecedores") or []),
        por_mes=json.dumps(_receita_por_mes(vendas), ensure_ascii=False),
        mais_vendidos=json.dumps(_mais_vendidos(vendas), ensure_ascii=False),
    )
    validos = validar_insights(extrair_json(client.gerar(prompt)))
    if not validos:
        logger.warning("Nenhum insight válido na resposta da IA")
        return []
    with transaction():
        criados = substituir_insights(validos)
    return criados


# =============================================================================
# Plano de meta
# =============================================================================

PROMPT_PLANO = """Você é um consultor especializado em negócios de calçados. Analise os dados fornecidos e crie um plano estratégico detalhado para atingir a meta.

DADOS DO NEGÓCIO:
- Meta: {titulo} ({tipo})
- Valor Alvo: {valor_alvo}
- Valor Atual: {valor_atual}
- Dias Restantes: {dias} dias

VENDAS:
- Total de Vendas: {total_vendas}
- Receita Total: R$ {receita}
- Vendas por Mês: {por_mes}
- Produtos Mais Vendidos: {mais_vendidos}

CUSTOS:
- Total de Custos: {total_custos}
- Valor Total: R$ {valor_custos}
- Por Categoria: {por_categoria}

FORNECEDORES:
- Total: {total_fornecedores}
- Performance: {performance}

PRODUTOS:
- Total: {total_produtos}
- Com Estoque: {com_estoque}
- Sem Estoque: {sem_estoque}

Crie um plano estratégico com:
1. ESTRATÉGIAS (5 a 8): categoria (marketing/vendas/produtos/fornecedores/custos/operacional), titulo, descricao, prioridade (alta/media/baixa), prazo, impacto (alto/medio/baixo)
2. CRONOGRAMA (4 semanas): semana, atividades, metas, observacoes
3. MÉTRICAS (3 a 5): nome, valorAtual, valorMeta, unidade, frequencia (diaria/semanal/mensal)
4. OBSERVAÇÕES GERAIS

Responda APENAS com um JSON válido no formato:
{{"estrategias": [...], "cronograma": [...], "metricas": [...], "observacoes": "..."}}"""

def _lista_texto(valor) -> List[str]:
    if isinstance(valor, str):
        return [valor] if valor.strip() else []
    if isinstance(valor, list):
        return [str(v) for v in valor if v is not None and str(v).strip()]
    return []

def _numero(valor) -> float:
    try:
        return float(valor)
    except (TypeError, ValueError):
        return 0.0

def normalizar_plano(dados: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not dados:
        return None
    estrategias = []
    for e in dados.get("estrategias") or []:
        if not isinstance(e, dict) or not str(e.get("titulo") or "").strip():
            continue
        estrategias.append({
            "categoria": _coagir(e.get("categoria"), CATEGORIAS_ESTRATEGIA, "operacional"),
            "titulo": str(e["titulo"]).strip(),
            "descricao": str(e.get("descricao") or ""),
            "prioridade": _coagir(e.get("prioridade"), PRIORIDADES, "media"),
            "prazo": str(e.get("prazo") or ""),
            "impacto": _coagir(e.get("impacto"), IMPACTOS, "medio"),
        })
    cronograma = []
    for n, s in enumerate(dados.get("cronograma") or [], start=1):
        if not isinstance(s, dict):
            continue
        try:
            semana = int(s.get("semana") or n)
        except (TypeError, ValueError):
            semana = n
        cronograma.append({
            "semana": semana,
            "atividades": _lista_texto(s.get("atividades")),
            "metas": _lista_texto(s.get("metas")),
            "observacoes": str(s.get("observacoes") or ""),
        })
    metricas_ = []
    for m in dados.get("metricas") or []:
        if not isinstance(m, dict) or not str(m.get("nome") or "").strip():
            continue
        metricas_.append({
            "nome": str(m["nome"]).strip(),
            "valor_atual": _numero(m.get("valorAtual", m.get("valor_atual"))),
            "valor_meta": _numero(m.get("valorMeta", m.get("valor_meta"))),
            "unidade": str(m.get("unidade") or ""),
            "frequencia": _coagir(m.get("frequencia"), FREQUENCIAS, "semanal"),
        })
    return {
        "estrategias": estrategias,
        "cronograma": cronograma[:4],
        "metricas": metricas_,
        "observacoes": str(dados.get("observacoes") or ""),
        "gerado_em": datetime.utcnow().isoformat(),
    }

def gerar_plano_meta_ia(meta: Any, dados: Dict[str, Any], client: Optional[GeminiClient] = None) -> Optional[Dict[str, Any]]:
    """`dados` no formato de services.carregar_dados_negocio()."""
    client = client or GeminiClient.from_config()
    vendas = metrics.vendas_ativas(dados.get("vendas") or [])
    custos = dados.get("custos") or []
    produtos = dados.get("produtos") or []
    moeda = meta.tipo != "vendas"
    prompt = PROMPT_PLANO.format(
        titulo=meta.titulo,
        tipo=meta.tipo,
        valor_alvo=("R$ " if moeda else "") + _fmt(meta.valor_alvo),
        valor_atual=("R$ " if moeda else "") + _fmt(meta.valor_atual),
        dias=metrics.dias_restantes(meta.data_fim),
        total_vendas=len(vendas),
        receita=_fmt(sum((v.preco_total for v in vendas), Decimal("0"))),
        por_mes=json.dumps(_receita_por_mes(vendas), ensure_ascii=False),
        mais_vendidos=json.dumps(_mais_vendidos(vendas), ensure_ascii=False),
        total_custos=len(custos),
        valor_custos=_fmt(sum((c.valor for c in custos), Decimal("0"))),
        por_categoria=json.dumps(
            {e["categoria"]: float(e["valor"]) for e in metrics.custos_por_categoria(custos)}, ensure_ascii=False
        ),
        total_fornecedores=len(dados.get("fornecedores") or []),
        performance=json.dumps(
            {e["fornecedor"]: float(e["receita_total"]) for e in metrics.desempenho_fornecedores(vendas)},
            ensure_ascii=False,
        ),
        total_produtos=len(produtos),
        com_estoque=sum(1 for p in produtos if (p.stock or 0) > 0),
        sem_estoque=sum(1 for p in produtos if (p.stock or 0) == 0),
    )
    plano = normalizar_plano(extrair_json(client.gerar(prompt)))
    if plano is None:
        logger.warning("Plano de IA indisponível para a meta %r", meta.titulo)
    return plano


# =============================================================================
# Relatórios
# =============================================================================

PROMPT_ANALISE = """Analise os seguintes dados de um negócio de calçados e forneça insights práticos e acionáveis:

Dados do negócio:
- Total de vendas: {total_vendas}
- Receita bruta: R$ {receita}
- Custos operacionais: R$ {custos}
- Lucro líquido: R$ {lucro}
- Número de fornecedores: {fornecedores}
- Vendas por mês: {por_mes}
- Produtos mais vendidos: {mais_vendidos}

Forneça 5-6 insights específicos, práticos e acionáveis para melhorar o negócio, um por linha. Seja direto."""

def gerar_analise_relatorio(resumo: Dict[str, Any], vendas: Sequence[Any] = (), client: Optional[GeminiClient] = None) -> List[str]:
    client = client or GeminiClient.from_config()
    prompt = PROMPT_ANALISE.format(
        total_vendas=resumo.get("total_vendas", 0),
        receita=_fmt(resumo.get("receita_bruta")),
        custos=_fmt(resumo.get("custos_operacionais")),
        lucro=_fmt(resumo.get("lucro_liquido")),
        fornecedores=len(resumo.get("fornecedores") or []),
        por_mes=json.dumps(_receita_por_mes(vendas), ensure_ascii=False),
        mais_vendidos=json.dumps(_mais_vendidos(vendas), ensure_ascii=False),
    )
    texto = client.gerar(prompt)
    if not texto:
        return []
    linhas = [l.strip() for l in texto.splitlines() if l.strip()]
    return linhas[:6]


# =============================================================================
# Sugestão de metas
# =============================================================================

def sugestoes_de_metas(vendas: Sequence[Any], agora: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Duas metas derivadas do histórico: lucro de 30% da receita e +25% em nº de vendas."""
    agora = agora or datetime.utcnow()
    vendas = metrics.vendas_ativas(vendas)
    receita = sum((Decimal(v.preco_total or 0) for v in vendas), Decimal("0"))
    alvo_lucro = (receita * Decimal("0.3")).quantize(Decimal("1"))
    alvo_vendas = (Decimal(len(vendas)) * Decimal("1.25")).quantize(Decimal("1"))
    return [
        {
            "titulo": "Aumentar Margem de Lucro",
            "descricao": "Com base no histórico, aumentar a margem de lucro focando em produtos premium",
            "tipo": "lucro",
            "valor_alvo": max(alvo_lucro, Decimal("1")),
            "data_inicio": agora,
            "data_fim": agora + timedelta(days=30),
        },
        {
            "titulo": "Otimizar Vendas por Fornecedor",
            "descricao": "Focar nos fornecedores com melhor desempenho para aumentar vendas",
            "tipo": "vendas",
            "valor_alvo": max(alvo_vendas, Decimal("1")),
            "data_inicio": agora,
            "data_fim": agora + timedelta(days=21),
        },
    ]

def sugerir_metas(dados: Dict[str, Any], client: Optional[GeminiClient] = None):
    """Cria as metas sugeridas e tenta anexar um plano de IA a cada uma."""
    from app.core.services import transaction, criar_meta, salvar_plano_meta

    client = client or GeminiClient.from_config()
    criadas = []
    with transaction():
        for sugestao in sugestoes_de_metas(dados.get("vendas") or []):
            criadas.append(criar_meta(criada_por_ia=True, **sugestao))

    for meta in criadas:
        plano = gerar_plano_meta_ia(meta, dados, client=client)
        if plano:
            with transaction():
                salvar_plano_meta(meta.id, plano)
    return criadas
