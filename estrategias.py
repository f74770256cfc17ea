# estrategias.py
# Estrategias de cruzamento extrato x relatorio
#
# Cada estrategia sabe:
# - candidatos(): quais registros do extrato podem formar par com um registro do relatorio
#   (busca pelos indices, sem varrer tudo quando possivel)
# - pontuar(): se o par vale para a estrategia e com qual pontuacao (None = nao vale)
#
# A ordem da lista define a confianca: a primeira estrategia que aceita o par e a usada.

import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from config import ConfigConciliacao
from modelos import (
    CONFIANCA_ALTA,
    CONFIANCA_BAIXA,
    CONFIANCA_MEDIA,
    ConfiguracaoInvalidaError,
    RegistroPagamento,
)
from normalizadores import contar_palavras_comuns, normalizar_texto_busca, primeiro_nome

logger = logging.getLogger(__name__)

PESO_DATA = 10000
MIN_LEN_NOME = 3


class IndiceExtrato:
    """Indices dos registros do extrato, criados a cada conciliacao."""

    def __init__(self, registros: Sequence[RegistroPagamento], limite_bucket: Optional[int] = None):
        self.registros = list(registros)
        self.por_documento: Dict[str, List[int]] = defaultdict(list)
        self.por_data = defaultdict(list)
        self.por_centavos: Dict[int, List[int]] = defaultdict(list)
        self.com_documento: List[int] = []

        for pos, reg in enumerate(self.registros):
            if reg.documento:
                self.por_documento[reg.documento].append(pos)
                self.com_documento.append(pos)
            if reg.data:
                self.por_data[reg.data].append(pos)
            self.por_centavos[reg.centavos].append(pos)

        if limite_bucket:
            for centavos, posicoes in self.por_centavos.items():
                if len(posicoes) > limite_bucket:
                    logger.warning(
                        "Valor %.2f tem %d lancamentos no extrato; usando so os %d primeiros",
                        centavos / 100, len(posicoes), limite_bucket,
                    )
                    self.por_centavos[centavos] = posicoes[:limite_bucket]

        logger.debug(
            "Indices criados: %d documentos, %d datas, %d valores",
            len(self.por_documento), len(self.por_data), len(self.por_centavos),
        )


# ==================================================================================
# FUNCOES DE APOIO
# ==================================================================================

def mesma_data(a: RegistroPagamento, b: RegistroPagamento) -> bool:
    return a.data is not None and b.data is not None and a.data == b.data


def dentro_tolerancia(a: RegistroPagamento, b: RegistroPagamento, tolerancia: float) -> bool:
    """Valores iguais (centavos) ou diferenca relativa <= tolerancia."""
    if a.centavos == b.centavos:
        return True
    return abs(a.valor - b.valor) <= tolerancia * max(a.valor, b.valor)


def pontuacao_base(relatorio: RegistroPagamento, extrato: RegistroPagamento) -> float:
    """Data igual vale mais que qualquer quantidade de palavras em comum."""
    bonus_data = PESO_DATA if mesma_data(relatorio, extrato) else 0
    return float(bonus_data + contar_palavras_comuns(relatorio.descricao, extrato.descricao))


# ==================================================================================
# ESTRATEGIAS
# ==================================================================================

class Estrategia:
    nome = ""
    confianca = CONFIANCA_BAIXA

    def __init__(self, config: ConfigConciliacao):
        self.config = config

    def candidatos(self, relatorio: RegistroPagamento, indice: IndiceExtrato) -> Iterable[int]:
        raise NotImplementedError

    def pontuar(self, relatorio: RegistroPagamento, extrato: RegistroPagamento) -> Optional[float]:
        raise NotImplementedError

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.nome}>"


class IdentificadorExato(Estrategia):
    """Documento do extrato igual ao identificador do relatorio."""
    nome = "identificador_exato"
    confianca = CONFIANCA_ALTA

    def candidatos(self, relatorio, indice):
        if not relatorio.documento:
            return []
        return indice.por_documento.get(relatorio.documento, [])

    def pontuar(self, relatorio, extrato):
        if relatorio.documento and relatorio.documento == extrato.documento:
            return pontuacao_base(relatorio, extrato)
        return None


class IdentificadorParcial(Estrategia):
    """
    Um identificador contido no outro.
    Identificadores curtos geram falsos positivos: o minimo e configuravel
    (min_len_identificador), aplicado ao menor dos dois.
    """
    nome = "identificador_parcial"
    confianca = CONFIANCA_MEDIA

    def _contidos(self, a: Optional[str], b: Optional[str]) -> bool:
        if not a or not b:
            return False
        menor, maior = (a, b) if len(a) <= len(b) else (b, a)
        return len(menor) >= self.config.min_len_identificador and menor in maior

    def candidatos(self, relatorio, indice):
        if not relatorio.documento:
            return []
        return [
            pos for pos in indice.com_documento
            if self._contidos(relatorio.documento, indice.registros[pos].documento)
        ]

    def pontuar(self, relatorio, extrato):
        if self._contidos(relatorio.documento, extrato.documento):
            return pontuacao_base(relatorio, extrato)
        return None


class ValorDataExato(Estrategia):
    nome = "valor_data_exato"
    confianca = CONFIANCA_ALTA

    def candidatos(self, relatorio, indice):
        if relatorio.data is None:
            return []
        return indice.por_data.get(relatorio.data, [])

    def pontuar(self, relatorio, extrato):
        if mesma_data(relatorio, extrato) and relatorio.centavos == extrato.centavos:
            return pontuacao_base(relatorio, extrato)
        return None


class ValorDataTolerancia(Estrategia):
    """Mesma data e valor dentro da tolerancia relativa (padrao 1%)."""
    nome = "valor_data_tolerancia"
    confianca = CONFIANCA_BAIXA

    def candidatos(self, relatorio, indice):
        if relatorio.data is None:
            return []
        return indice.por_data.get(relatorio.data, [])

    def pontuar(self, relatorio, extrato):
        tol = self.config.tolerancia_valor
        if not (mesma_data(relatorio, extrato) and dentro_tolerancia(relatorio, extrato, tol)):
            return None
        # mais proximo no valor ganha no desempate (0..1)
        limite = tol * max(relatorio.valor, extrato.valor)
        proximidade = 1.0 - (abs(relatorio.valor - extrato.valor) / limite) if limite else 1.0
        return pontuacao_base(relatorio, extrato) + max(proximidade, 0.0)


class CpfNomeValorData(Estrategia):
    """
    Descricao do extrato contem o CPF/CNPJ do relatorio ou o primeiro nome
    do favorecido (com mais de 2 letras), com mesma data e valor na tolerancia.
    """
    nome = "cpf_nome_valor_data"
    confianca = CONFIANCA_BAIXA

    def candidatos(self, relatorio, indice):
        if relatorio.data is None or not (relatorio.cpf_cnpj or relatorio.favorecido):
            return []
        return indice.por_data.get(relatorio.data, [])

    def _cita_favorecido(self, relatorio, extrato) -> bool:
        descricao = normalizar_texto_busca(extrato.descricao)
        if not descricao:
            return False
        if relatorio.cpf_cnpj:
            digitos = re.sub(r"[.\-/\s]", "", descricao)
            if relatorio.cpf_cnpj.lower() in digitos:
                return True
        nome = primeiro_nome(relatorio.favorecido)
        return len(nome) >= MIN_LEN_NOME and nome in descricao

    def pontuar(self, relatorio, extrato):
        if not mesma_data(relatorio, extrato):
            return None
        if not dentro_tolerancia(relatorio, extrato, self.config.tolerancia_valor):
            return None
        if not self._cita_favorecido(relatorio, extrato):
            return None
        return pontuacao_base(relatorio, extrato)


class ValorPalavras(Estrategia):
    """
    Mesmo valor exato; pontuacao = (10000 se mesma data) + palavras em comum.
    Base do modo simples (sem data ou sem identificador).
    """
    nome = "valor_palavras"
    confianca = CONFIANCA_BAIXA

    def candidatos(self, relatorio, indice):
        return indice.por_centavos.get(relatorio.centavos, [])

    def pontuar(self, relatorio, extrato):
        if relatorio.centavos != extrato.centavos:
            return None
        return pontuacao_base(relatorio, extrato)


ESTRATEGIAS = {
    cls.nome: cls
    for cls in (
        IdentificadorExato,
        IdentificadorParcial,
        ValorDataExato,
        ValorDataTolerancia,
        CpfNomeValorData,
        ValorPalavras,
    )
}


def montar_estrategias(config: ConfigConciliacao) -> List[Estrategia]:
    """Instancia as estrategias na ordem configurada."""
    estrategias = []
    for nome in config.estrategias:
        cls = ESTRATEGIAS.get(nome)
        if cls is None:
            raise ConfiguracaoInvalidaError(
                f"[Config] Estrategia desconhecida: '{nome}'. "
                f"Disponiveis: {', '.join(ESTRATEGIAS)}"
            )
        estrategias.append(cls(config))
    return estrategias
