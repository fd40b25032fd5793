# app/core/storage.py
from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from flask import current_app
from werkzeug.utils import secure_filename

from app.core.services import ValidationError

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"


def _upload_root() -> Path:
    return Path(current_app.config["UPLOAD_FOLDER"])

def _tamanho(arquivo) -> int:
    stream = arquivo.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    tamanho = stream.tell()
    stream.seek(pos)
    return tamanho

def salvar_imagem(arquivo, pasta: str = "produtos") -> str:
    """
    Grava a imagem em UPLOAD_FOLDER/<pasta>/<timestamp>_<nome> e devolve a URL pública.
    """
    if not arquivo or not arquivo.filename:
        raise ValidationError("Nenhum arquivo enviado")
    if not (arquivo.mimetype or "").startswith("image/"):
        raise ValidationError("Por favor, selecione apenas arquivos de imagem")
    limite = current_app.config.get("MAX_IMAGE_BYTES", 5 * 1024 * 1024)
    if _tamanho(arquivo) > limite:
        raise ValidationError(f"A imagem deve ter no máximo {limite // (1024 * 1024)}MB")

    nome = secure_filename(arquivo.filename) or "imagem"
    pasta = secure_filename(pasta) or "produtos"
    timestamp = int(datetime.utcnow().timestamp() * 1000)
    relativo = f"{pasta}/{timestamp}_{nome}"

    destino = _upload_root() / pasta
    destino.mkdir(parents=True, exist_ok=True)
    arquivo.save(str(_upload_root() / relativo))
    logger.info("Imagem salva em %s", relativo)
    return URL_PREFIX + relativo

def remover_imagem(url: Optional[str]) -> bool:
    """Apaga um arquivo gerado por salvar_imagem. URLs externas são ignoradas."""
    if not url or not url.startswith(URL_PREFIX):
        return False
    raiz = _upload_root().resolve()
    caminho = (raiz / url[len(URL_PREFIX):]).resolve()
    if raiz not in caminho.parents or not caminho.is_file():
        return False
    caminho.unlink()
    logger.info("Imagem removida: %s", url)
    return True
