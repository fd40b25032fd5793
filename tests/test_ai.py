"""Integração com o Gemini, sempre com requests.post substituído."""

import json
from datetime import datetime, timedelta

import pytest
import requests

from app.core import ai
from app.core.models import Goal, Insight
from app.core.services import transaction, substituir_insights, criar_meta


class FakeResponse:
    def __init__(self, texto=None, status_code=200, payload=None):
        self.status_code = status_code
        if payload is None:
            payload = {"candidates": [{"content": {"parts": [{"text": texto}]}}]}
        self._payload = payload

    def json(self):
        return self._payload


class FakeApi:
    """Registra as chamadas e devolve as respostas enfileiradas em ordem."""

    def __init__(self):
        self.registro = []
        self.respostas = []

    def post(self, url, **kwargs):
        self.registro.append({"url": url, **kwargs})
        resposta = self.respostas.pop(0) if self.respostas else FakeResponse("{}")
        if isinstance(resposta, Exception):
            raise resposta
        return resposta


@pytest.fixture
def chamadas(monkeypatch):
    api = FakeApi()
    monkeypatch.setattr(ai.requests, "post", api.post)
    return api


def _client():
    return ai.GeminiClient(api_key="test-key", model="gemini-test", timeout=5)


# ----------------------------
# extrair_json
# ----------------------------

def test_extrair_json_de_bloco_markdown():
    texto = 'Claro! Segue:\n```json\n{"insights": [{"titulo": "Use {chaves} com cuidado", "acao": "x"}]}\n```\nAbraço'
    obj = ai.extrair_json(texto)
    assert obj["insights"][0]["titulo"] == "Use {chaves} com cuidado"


def test_extrair_json_ignora_objeto_invalido_antes_do_valido():
    texto = 'nota {sem aspas} e depois {"ok": true}'
    assert ai.extrair_json(texto) == {"ok": True}


@pytest.mark.parametrize("texto", [None, "", "sem json nenhum", "[1, 2, 3]"])
def test_extrair_json_sem_objeto(texto):
    assert ai.extrair_json(texto) is None


# ----------------------------
# GeminiClient
# ----------------------------

def test_sem_chave_nao_chama_api(chamadas):
    client = ai.GeminiClient(api_key="", model="gemini-test")
    assert client.gerar("oi") is None
    assert chamadas.registro == []


def test_payload_enviado(chamadas):
    chamadas.respostas.append(FakeResponse("resposta"))
    assert _client().gerar("Analise") == "resposta"
    call = chamadas.registro[0]
    assert call["url"].endswith("/gemini-test:generateContent")
    assert call["params"] == {"key": "test-key"}
    assert call["timeout"] == 5
    assert call["json"]["contents"][0]["parts"][0]["text"] == "Analise"
    assert call["json"]["generationConfig"]["temperature"] == 0.7


@pytest.mark.parametrize("resposta", [
    FakeResponse("x", status_code=500),
    FakeResponse(payload={"candidates": []}),
    FakeResponse("   "),
    requests.exceptions.Timeout(),
    requests.exceptions.ConnectionError(),
])
def test_falhas_devolvem_none(chamadas, resposta):
    chamadas.respostas.append(resposta)
    assert _client().gerar("oi") is None


# ----------------------------
# Insights
# ----------------------------

def test_validar_insights_coage_campos():
    dados = {"insights": [
        {"titulo": "Reponha botas", "categoria": "Produtos", "prioridade": "urgente"},
        {"titulo": "  ", "categoria": "vendas"},
        "lixo",
    ]}
    validos = ai.validar_insights(dados)
    assert len(validos) == 1
    assert validos[0]["categoria"] == "produtos"
    assert validos[0]["prioridade"] == "media"


def test_gerar_insights_substitui_anteriores(db_session, chamadas):
    with transaction():
        substituir_insights([{"titulo": "Antigo", "categoria": "geral", "prioridade": "baixa"}])

    resposta = {"insights": [
        {"titulo": "Foque em sandálias", "descricao": "Verão chegando", "categoria": "vendas", "prioridade": "alta", "acao": "Campanha"},
        {"titulo": "Renegocie frete", "categoria": "logística", "prioridade": "media"},
    ]}
    chamadas.respostas.append(FakeResponse("```json\n" + json.dumps(resposta) + "\n```"))

    criados = ai.gerar_insights_ia({"total_vendas": 0, "receita_bruta": 0}, [], client=_client())

    assert len(criados) == 2
    ativos = Insight.query.filter_by(ativo=True).order_by(Insight.id).all()
    assert [i.titulo for i in ativos] == ["Foque em sandálias", "Renegocie frete"]
    assert ativos[1].categoria == "geral"
    assert Insight.query.filter_by(titulo="Antigo").one().ativo is False


def test_resposta_sem_json_mantem_insights(db_session, chamadas):
    with transaction():
        substituir_insights([{"titulo": "Antigo"}])
    chamadas.respostas.append(FakeResponse("Desculpe, não consegui analisar."))

    assert ai.gerar_insights_ia({}, [], client=_client()) == []
    assert Insight.query.filter_by(ativo=True).count() == 1


# ----------------------------
# Planos e metas
# ----------------------------

PLANO = {
    "estrategias": [
        {"categoria": "marketing", "titulo": "Instagram", "descricao": "Posts diários", "prioridade": "alta", "prazo": "1 semana", "impacto": "alto"},
        {"categoria": "astrologia", "titulo": "Lua cheia", "impacto": "enorme"},
        {"descricao": "sem título"},
    ],
    "cronograma": [{"semana": i, "atividades": ["a"], "metas": "m"} for i in range(1, 7)],
    "metricas": [{"nome": "Ticket médio", "valorAtual": "120", "valorMeta": 150, "unidade": "R$", "frequencia": "semanal"}],
    "observacoes": "Revisar mensalmente",
}


def test_normalizar_plano():
    plano = ai.normalizar_plano(PLANO)
    assert [e["titulo"] for e in plano["estrategias"]] == ["Instagram", "Lua cheia"]
    assert plano["estrategias"][1]["categoria"] == "operacional"
    assert plano["estrategias"][1]["impacto"] == "medio"
    assert len(plano["cronograma"]) == 4
    assert plano["cronograma"][0]["metas"] == ["m"]
    assert plano["metricas"][0]["valor_atual"] == 120.0
    assert plano["metricas"][0]["valor_meta"] == 150.0
    assert plano["observacoes"] == "Revisar mensalmente"
    assert ai.normalizar_plano(None) is None


def test_plano_meta_sem_resposta(db_session, chamadas):
    with transaction():
        meta = criar_meta("Receita", "receita", "1000", datetime.utcnow() + timedelta(days=10))
    chamadas.respostas.append(FakeResponse("x", status_code=503))
    assert ai.gerar_plano_meta_ia(meta, {"vendas": [], "custos": []}, client=_client()) is None


def test_sugestoes_de_metas():
    agora = datetime(2025, 6, 1, 10, 0)
    sugestoes = ai.sugestoes_de_metas([], agora=agora)
    assert [s["tipo"] for s in sugestoes] == ["lucro", "vendas"]
    assert sugestoes[0]["data_fim"] == agora + timedelta(days=30)
    assert sugestoes[1]["data_fim"] == agora + timedelta(days=21)
    assert all(s["valor_alvo"] >= 1 for s in sugestoes)


def test_sugerir_metas_cria_metas_com_plano(db_session, chamadas):
    chamadas.respostas.extend([FakeResponse(json.dumps(PLANO)), FakeResponse(json.dumps(PLANO))])

    criadas = ai.sugerir_metas({"vendas": [], "custos": [], "produtos": [], "fornecedores": []}, client=_client())

    assert len(criadas) == 2
    metas = Goal.query.order_by(Goal.id).all()
    assert all(m.criada_por_ia for m in metas)
    assert all(m.plano_ia and m.plano_ia["estrategias"] for m in metas)
    assert len(chamadas.registro) == 2
