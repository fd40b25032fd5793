import io
from pathlib import Path

import pytest
from werkzeug.datastructures import FileStorage

from app.core.services import ValidationError
from app.core.storage import salvar_imagem, remover_imagem


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


def _arquivo(conteudo=b"\x89PNG fake", nome="Foto Tênis.png", tipo="image/png"):
    return FileStorage(stream=io.BytesIO(conteudo), filename=nome, content_type=tipo)


def test_salva_imagem_e_devolve_url(ctx):
    url = salvar_imagem(_arquivo())
    assert url.startswith("/uploads/produtos/")
    assert url.endswith("_Foto_Tenis.png")
    gravado = Path(ctx.config["UPLOAD_FOLDER"]) / url[len("/uploads/"):]
    assert gravado.read_bytes() == b"\x89PNG fake"


def test_rejeita_nao_imagem(ctx):
    with pytest.raises(ValidationError, match="imagem"):
        salvar_imagem(_arquivo(nome="planilha.csv", tipo="text/csv"))


def test_rejeita_imagem_grande(ctx):
    # MAX_IMAGE_BYTES = 1024 nos testes
    with pytest.raises(ValidationError):
        salvar_imagem(_arquivo(conteudo=b"x" * 2048))
    assert not (Path(ctx.config["UPLOAD_FOLDER"]) / "produtos").exists()


def test_rejeita_arquivo_vazio(ctx):
    with pytest.raises(ValidationError):
        salvar_imagem(None)


def test_remove_imagem(ctx):
    url = salvar_imagem(_arquivo())
    assert remover_imagem(url) is True
    assert remover_imagem(url) is False


@pytest.mark.parametrize("url", [None, "", "https://cdn.exemplo.com/foto.png", "/uploads/../config.py"])
def test_remover_ignora_urls_externas(ctx, url):
    assert remover_imagem(url) is False
