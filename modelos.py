# modelos.py
# Estruturas de dados da conciliacao (extrato bancario x relatorio financeiro)

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

ORIGEM_EXTRATO = "extrato"
ORIGEM_RELATORIO = "relatorio"

CONFIANCA_ALTA = "alta"
CONFIANCA_MEDIA = "media"
CONFIANCA_BAIXA = "baixa"


class PlanilhaInvalidaError(ValueError):
    """Arquivo enviado nao pode ser lido como planilha."""


class ConfiguracaoInvalidaError(ValueError):
    """Parametro de configuracao da conciliacao invalido."""


@dataclass(frozen=True)
class RegistroPagamento:
    """
    Um pagamento normalizado, vindo de uma linha de uma das planilhas.
    - linha: numero da linha na aba de origem (1 = primeira linha)
    - valor: sempre positivo (valor absoluto)
    """
    linha: int
    valor: float
    origem: str
    valor_original: Any = None
    data: Optional[date] = None
    data_original: Any = None
    descricao: str = ""
    documento: Optional[str] = None
    cpf_cnpj: Optional[str] = None
    favorecido: str = ""

    @property
    def centavos(self) -> int:
        return int(round(self.valor * 100))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "linhaOriginal": self.linha,
            "origem": self.origem,
            "valor": round(self.valor, 2),
            "valorOriginal": _serializavel(self.valor_original),
            "data": self.data.isoformat() if self.data else None,
            "dataOriginal": _serializavel(self.data_original),
            "descricao": self.descricao,
            "documento": self.documento,
            "cpfCnpj": self.cpf_cnpj,
            "favorecido": self.favorecido,
        }


@dataclass(frozen=True)
class Candidato:
    """Par possivel (extrato x relatorio) antes da escolha final."""
    extrato: RegistroPagamento
    relatorio: RegistroPagamento
    metodo: str
    confianca: str
    prioridade: int
    pontuacao: float
    # posicao de cada registro na lista de entrada (identifica o registro na execucao)
    pos_extrato: int = 0
    pos_relatorio: int = 0

    def chave_ordenacao(self):
        # maior prioridade/pontuacao primeiro, depois ordem original das linhas
        return (
            -self.prioridade,
            -self.pontuacao,
            self.relatorio.linha,
            self.extrato.linha,
            self.pos_relatorio,
            self.pos_extrato,
        )


@dataclass(frozen=True)
class Correspondencia:
    extrato: RegistroPagamento
    relatorio: RegistroPagamento
    metodo: str
    confianca: str
    pontuacao: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extrato": self.extrato.to_dict(),
            "relatorio": self.relatorio.to_dict(),
            "metodo": self.metodo,
            "confianca": self.confianca,
            "pontuacao": round(self.pontuacao, 4),
            "diferenca": round(abs(self.extrato.valor - self.relatorio.valor), 2),
        }


@dataclass
class ResultadoConciliacao:
    correspondencias: List[Correspondencia] = field(default_factory=list)
    # estao no relatorio financeiro mas nao no extrato
    ausentes_no_extrato: List[RegistroPagamento] = field(default_factory=list)
    # estao no extrato mas nao no relatorio financeiro
    ausentes_no_relatorio: List[RegistroPagamento] = field(default_factory=list)
    # possiveis pares (diagnostico), na mesma ordem das listas de ausentes
    sugestoes_ausentes_no_extrato: List[List[Dict[str, Any]]] = field(default_factory=list)
    sugestoes_ausentes_no_relatorio: List[List[Dict[str, Any]]] = field(default_factory=list)
    total_extrato: int = 0
    total_relatorio: int = 0


def _serializavel(valor):
    """Converte valor bruto de celula para algo aceito em JSON."""
    if valor is None:
        return None
    if isinstance(valor, bool):
        return valor
    if isinstance(valor, (int, float)):
        if valor != valor:  # NaN
            return None
        return valor
    if hasattr(valor, "isoformat"):
        return valor.isoformat()
    return str(valor)
