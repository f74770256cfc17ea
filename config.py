# config.py
# Parametros da conciliacao (tolerancias, estrategias, colunas fixas)
#
# Os valores padrao podem ser sobrescritos por um JSON em
# data/conciliacao_config.json (ou no caminho da variavel CONCILIACAO_CONFIG).

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from modelos import ConfiguracaoInvalidaError

logger = logging.getLogger(__name__)

CONFIG_FILE = 'data/conciliacao_config.json'

ESTRATEGIAS_PADRAO = [
    "identificador_exato",
    "identificador_parcial",
    "valor_data_exato",
    "valor_data_tolerancia",
    "cpf_nome_valor_data",
    "valor_palavras",
]

DEFAULTS = {
    "tolerancia_valor": 0.01,        # 1% (relativa)
    "tolerancia_quase": 0.01,        # 1% para sugestoes de revisao
    "limite_quase": 5,
    "min_len_identificador": 1,
    "estrategias": ESTRATEGIAS_PADRAO,
    "limite_bucket": None,
    "colunas_fixas_extrato": None,   # ex: {"data": "A", "valor": "E", "linha_inicial": 2}
    "colunas_fixas_relatorio": None,
    "pasta_modelos": "data/modelos",
}


@dataclass
class ConfigConciliacao:
    tolerancia_valor: float = 0.01
    tolerancia_quase: float = 0.01
    limite_quase: int = 5
    min_len_identificador: int = 1
    estrategias: List[str] = field(default_factory=lambda: list(ESTRATEGIAS_PADRAO))
    limite_bucket: Optional[int] = None
    colunas_fixas_extrato: Optional[Dict] = None
    colunas_fixas_relatorio: Optional[Dict] = None
    pasta_modelos: str = "data/modelos"


def _validar_tolerancia(nome: str, valor) -> float:
    try:
        valor = float(valor)
    except (TypeError, ValueError):
        raise ConfiguracaoInvalidaError(f"[Config] '{nome}' deve ser numero, recebido: {valor!r}")
    if not (0 <= valor < 1):
        raise ConfiguracaoInvalidaError(
            f"[Config] '{nome}' deve estar entre 0 e 1 (ex: 0.01 = 1%), recebido: {valor}"
        )
    return valor


def _validar_inteiro(nome: str, valor, minimo: int) -> int:
    if isinstance(valor, bool) or not isinstance(valor, int) or valor < minimo:
        raise ConfiguracaoInvalidaError(f"[Config] '{nome}' deve ser inteiro >= {minimo}, recebido: {valor!r}")
    return valor


def config_de_dict(dados: dict) -> ConfigConciliacao:
    """Monta ConfigConciliacao a partir de um dict (defaults + sobrescritas)."""
    merged = dict(DEFAULTS)
    for k, v in (dados or {}).items():
        if k not in DEFAULTS:
            logger.warning("Parametro de configuracao desconhecido ignorado: %s", k)
            continue
        merged[k] = v

    estrategias = merged["estrategias"]
    if not isinstance(estrategias, list) or not estrategias or not all(isinstance(e, str) for e in estrategias):
        raise ConfiguracaoInvalidaError("[Config] 'estrategias' deve ser uma lista de nomes nao vazia")

    limite_bucket = merged["limite_bucket"]
    if limite_bucket is not None:
        limite_bucket = _validar_inteiro("limite_bucket", limite_bucket, 1)

    for chave in ("colunas_fixas_extrato", "colunas_fixas_relatorio"):
        if merged[chave] is not None and not isinstance(merged[chave], dict):
            raise ConfiguracaoInvalidaError(f"[Config] '{chave}' deve ser um objeto {{campo: letra}}")

    return ConfigConciliacao(
        tolerancia_valor=_validar_tolerancia("tolerancia_valor", merged["tolerancia_valor"]),
        tolerancia_quase=_validar_tolerancia("tolerancia_quase", merged["tolerancia_quase"]),
        limite_quase=_validar_inteiro("limite_quase", merged["limite_quase"], 0),
        min_len_identificador=_validar_inteiro("min_len_identificador", merged["min_len_identificador"], 1),
        estrategias=list(estrategias),
        limite_bucket=limite_bucket,
        colunas_fixas_extrato=merged["colunas_fixas_extrato"],
        colunas_fixas_relatorio=merged["colunas_fixas_relatorio"],
        pasta_modelos=str(merged["pasta_modelos"]),
    )


def carregar_config(caminho: Optional[str] = None) -> ConfigConciliacao:
    """Carrega configuracao do arquivo JSON (se existir) sobre os padroes."""
    caminho = caminho or os.environ.get('CONCILIACAO_CONFIG', CONFIG_FILE)

    if not os.path.exists(caminho):
        return config_de_dict({})

    try:
        with open(caminho, 'r', encoding='utf-8') as f:
            dados = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfiguracaoInvalidaError(f"[Config] Arquivo {caminho} nao e um JSON valido: {e}")

    if not isinstance(dados, dict):
        raise ConfiguracaoInvalidaError(f"[Config] Arquivo {caminho} deve conter um objeto JSON")

    logger.info("Configuracao carregada de %s", caminho)
    return config_de_dict(dados)


def salvar_config(config: ConfigConciliacao, caminho: Optional[str] = None):
    """Salva configuracao no arquivo JSON"""
    caminho = caminho or os.environ.get('CONCILIACAO_CONFIG', CONFIG_FILE)
    os.makedirs(os.path.dirname(caminho) or ".", exist_ok=True)
    with open(caminho, 'w', encoding='utf-8') as f:
        json.dump(config.__dict__, f, ensure_ascii=False, indent=4)
