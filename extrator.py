# extrator.py
# Leitura da primeira aba das planilhas e extracao dos pagamentos
#
# Extrato bancario: so debitos (pagamentos) entram na conciliacao.
# Relatorio financeiro: toda linha com valor > 0.
# Linhas sem valor valido sao ignoradas (nao e erro); arquivo ilegivel e erro fatal.

import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import openpyxl
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from colunas import CAMPOS, ColunasFixas, MapeamentoColunas, resolver_colunas_extrato, resolver_colunas_relatorio
from modelos import ORIGEM_EXTRATO, ORIGEM_RELATORIO, PlanilhaInvalidaError, RegistroPagamento
from normalizadores import (
    eh_debito,
    normalizar_cpf_cnpj,
    normalizar_data,
    normalizar_documento,
    normalizar_valor,
)

logger = logging.getLogger(__name__)

MAX_LINHAS_BUSCA_CABECALHO = 15

_RE_CABECALHO = re.compile(
    r"data|valor|hist[oó]rico|descri|lan[cç]amento|d[ée]bito|cr[ée]dito|documento|dcto"
    r"|favorecido|cpf|cnpj|identificador|saldo|t[ée]cnico",
    re.IGNORECASE,
)
_RE_LINHA_CABECALHO_TECNICO = re.compile(r"nome|t[ée]cnico", re.IGNORECASE)


@dataclass(frozen=True)
class Linha:
    numero: int                      # linha na aba (1 = primeira)
    celulas: Tuple[Any, ...]         # valores por posicao (A, B, C...)
    valores: Dict[str, Any]          # rotulo do cabecalho -> valor


@dataclass
class PlanilhaLida:
    nome_aba: str
    cabecalho: List[str]
    linha_cabecalho: int
    linhas: List[Linha]              # linhas de dados (apos o cabecalho), nao vazias
    brutas: List[Linha]              # todas as linhas nao vazias da aba

    @property
    def amostra(self) -> Dict[str, Any]:
        """Primeira linha de dados, usada na deteccao de colunas."""
        return self.linhas[0].valores if self.linhas else {}


@dataclass
class ExtracaoPlanilha:
    registros: List[RegistroPagamento] = field(default_factory=list)
    total_linhas: int = 0
    ignoradas: int = 0
    # entradas (creditos), ja contadas em ignoradas
    creditos: int = 0
    mapeamento: MapeamentoColunas = field(default_factory=MapeamentoColunas)
    nome_aba: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aba": self.nome_aba,
            "totalLinhas": self.total_linhas,
            "totalPagamentos": len(self.registros),
            "linhasIgnoradas": self.ignoradas,
            "linhasCredito": self.creditos,
            "colunas": self.mapeamento.to_dict(),
        }


# ==================================================================================
# LEITURA DA PLANILHA
# ==================================================================================

def _limpar_celula(valor):
    if isinstance(valor, str):
        valor = valor.strip()
        return valor or None
    return valor


def _linha_vazia(celulas) -> bool:
    return all(c is None for c in celulas)


def _localizar_cabecalho(brutas: List[Linha]) -> int:
    """
    Indice (em brutas) da linha de cabecalho.
    Exports de banco costumam ter titulo/agencia/conta antes do cabecalho real.
    """
    for i, linha in enumerate(brutas[:MAX_LINHAS_BUSCA_CABECALHO]):
        textos = [c for c in linha.celulas if isinstance(c, str)]
        if sum(1 for t in textos if _RE_CABECALHO.search(t)) >= 2:
            return i
    return 0


def _montar_cabecalho(celulas) -> List[str]:
    cabecalho = []
    vistos = {}
    for i, c in enumerate(celulas):
        rotulo = str(c).strip() if c is not None else ""
        if not rotulo:
            rotulo = f"Coluna {get_column_letter(i + 1)}"
        if rotulo in vistos:
            vistos[rotulo] += 1
            rotulo = f"{rotulo}.{vistos[rotulo]}"
        else:
            vistos[rotulo] = 0
        cabecalho.append(rotulo)
    return cabecalho


def abrir_workbook(conteudo: bytes):
    try:
        wb = openpyxl.load_workbook(io.BytesIO(conteudo), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError, TypeError) as e:
        raise PlanilhaInvalidaError(
            f"Nao foi possivel ler a planilha: {e}\n\n"
            f"Verifique se o arquivo e uma planilha Excel (.xlsx) valida."
        ) from e

    if not wb.worksheets:
        raise PlanilhaInvalidaError("A planilha nao possui nenhuma aba de dados.")
    return wb


def ler_primeira_aba(conteudo: bytes) -> PlanilhaLida:
    """Le somente a primeira aba do arquivo .xlsx recebido em memoria."""
    return ler_aba(abrir_workbook(conteudo).worksheets[0])


def ler_aba(ws) -> PlanilhaLida:
    brutas = []
    for numero, row in enumerate(ws.iter_rows(min_row=1, values_only=True), start=1):
        celulas = tuple(_limpar_celula(c) for c in row)
        if _linha_vazia(celulas):
            continue
        brutas.append(Linha(numero=numero, celulas=celulas, valores={}))

    if not brutas:
        logger.warning("Aba '%s' sem dados", ws.title)
        return PlanilhaLida(nome_aba=ws.title, cabecalho=[], linha_cabecalho=0, linhas=[], brutas=[])

    idx_cabecalho = _localizar_cabecalho(brutas)
    cabecalho = _montar_cabecalho(brutas[idx_cabecalho].celulas)

    linhas = []
    for bruta in brutas[idx_cabecalho + 1:]:
        valores = {}
        for i, c in enumerate(bruta.celulas):
            rotulo = cabecalho[i] if i < len(cabecalho) else f"Coluna {get_column_letter(i + 1)}"
            valores[rotulo] = c
        linhas.append(Linha(numero=bruta.numero, celulas=bruta.celulas, valores=valores))

    logger.info(
        "Aba '%s': cabecalho na linha %d, %d linhas de dados",
        ws.title, brutas[idx_cabecalho].numero, len(linhas),
    )
    return PlanilhaLida(
        nome_aba=ws.title,
        cabecalho=cabecalho,
        linha_cabecalho=brutas[idx_cabecalho].numero,
        linhas=linhas,
        brutas=brutas,
    )


# ==================================================================================
# EXTRACAO DOS PAGAMENTOS
# ==================================================================================

def _texto(valor) -> str:
    if valor is None:
        return ""
    if isinstance(valor, float) and valor.is_integer():
        return str(int(valor))
    return str(valor).strip()


def _preparar_leitura(planilha: PlanilhaLida, colunas_fixas: Optional[ColunasFixas],
                      resolver: Callable, instrucoes) -> Tuple[MapeamentoColunas, List[Linha], Callable]:
    if colunas_fixas is not None:
        mapa = MapeamentoColunas(valor_eh_debito=colunas_fixas.valor_eh_debito)
        for campo in CAMPOS:
            if campo in colunas_fixas.indices:
                setattr(mapa, campo, get_column_letter(colunas_fixas.indices[campo] + 1))
                mapa.fonte[campo] = "fixa"
        linhas = [l for l in planilha.brutas if l.numero >= colunas_fixas.linha_inicial]

        def ler(linha: Linha, campo: str):
            return colunas_fixas.ler(linha.celulas, campo)

        return mapa, linhas, ler

    mapa = resolver(planilha.cabecalho, planilha.amostra, instrucoes)

    def ler(linha: Linha, campo: str):
        coluna = getattr(mapa, campo)
        return linha.valores.get(coluna) if coluna else None

    return mapa, planilha.linhas, ler


def extrair_extrato(planilha: PlanilhaLida, instrucoes=None,
                    colunas_fixas: Optional[ColunasFixas] = None) -> ExtracaoPlanilha:
    """
    Extrai os pagamentos (debitos) do extrato bancario.
    - Coluna exclusiva de debito: todo valor preenchido e pagamento
    - Coluna de valor com sinal: so valores negativos (ou com sufixo D)
    - Linha com valor so na coluna de credito e entrada, nao pagamento
    """
    mapa, linhas, ler = _preparar_leitura(planilha, colunas_fixas, resolver_colunas_extrato, instrucoes)
    extracao = ExtracaoPlanilha(total_linhas=len(linhas), mapeamento=mapa, nome_aba=planilha.nome_aba)

    if not mapa.valor:
        logger.warning("Extrato sem coluna de valor/debito identificada; nenhum pagamento extraido")
        extracao.ignoradas = len(linhas)
        return extracao

    for linha in linhas:
        bruto = ler(linha, "valor")
        valor = normalizar_valor(bruto)

        if not valor and normalizar_valor(ler(linha, "credito")):
            logger.debug("Extrato linha %d ignorada: lancamento de credito", linha.numero)
            extracao.creditos += 1
            extracao.ignoradas += 1
            continue

        if valor is None or valor <= 0:
            logger.debug("Extrato linha %d ignorada: valor invalido %r", linha.numero, bruto)
            extracao.ignoradas += 1
            continue

        if not mapa.valor_eh_debito and not eh_debito(bruto):
            # credito (entrada) nao e pagamento
            extracao.creditos += 1
            extracao.ignoradas += 1
            continue

        data_bruta = ler(linha, "data")
        extracao.registros.append(RegistroPagamento(
            linha=linha.numero,
            valor=valor,
            origem=ORIGEM_EXTRATO,
            valor_original=bruto,
            data=normalizar_data(data_bruta),
            data_original=data_bruta,
            descricao=_texto(ler(linha, "descricao")),
            documento=normalizar_documento(ler(linha, "documento")),
            cpf_cnpj=normalizar_cpf_cnpj(ler(linha, "cpf_cnpj")),
        ))

    logger.info("%d pagamentos encontrados no extrato bancario", len(extracao.registros))
    return extracao


def extrair_relatorio(planilha: PlanilhaLida, instrucoes=None,
                      colunas_fixas: Optional[ColunasFixas] = None) -> ExtracaoPlanilha:
    """Extrai os pagamentos do relatorio financeiro (valor > 0)."""
    mapa, linhas, ler = _preparar_leitura(planilha, colunas_fixas, resolver_colunas_relatorio, instrucoes)
    extracao = ExtracaoPlanilha(total_linhas=len(linhas), mapeamento=mapa, nome_aba=planilha.nome_aba)

    if not mapa.valor:
        logger.warning("Relatorio sem coluna de valor identificada; nenhum pagamento extraido")
        extracao.ignoradas = len(linhas)
        return extracao

    for linha in linhas:
        tecnico = _texto(ler(linha, "nome_tecnico"))
        if tecnico and _RE_LINHA_CABECALHO_TECNICO.search(tecnico):
            # cabecalho repetido no meio do relatorio
            extracao.ignoradas += 1
            continue

        bruto = ler(linha, "valor")
        valor = normalizar_valor(bruto)
        if valor is None or valor <= 0:
            logger.debug("Relatorio linha %d ignorada: valor invalido %r", linha.numero, bruto)
            extracao.ignoradas += 1
            continue

        favorecido = _texto(ler(linha, "favorecido"))
        data_bruta = ler(linha, "data")
        extracao.registros.append(RegistroPagamento(
            linha=linha.numero,
            valor=valor,
            origem=ORIGEM_RELATORIO,
            valor_original=bruto,
            data=normalizar_data(data_bruta),
            data_original=data_bruta,
            descricao=_texto(ler(linha, "descricao")) or favorecido or tecnico,
            documento=normalizar_documento(ler(linha, "documento")),
            cpf_cnpj=normalizar_cpf_cnpj(ler(linha, "cpf_cnpj")),
            favorecido=favorecido or tecnico,
        ))

    logger.info("%d pagamentos encontrados no relatorio financeiro", len(extracao.registros))
    return extracao
