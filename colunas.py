# colunas.py
# Identificacao das colunas de cada planilha (data, valor, descricao, documento...)
#
# Ordem de busca por campo:
# 1) instrucoes do modelo detectado (detector_modelo.py), se houver
# 2) heuristica: nome da coluna e formato do valor na primeira linha de dados
# Modo alternativo: colunas fixas por letra ("A", "E", ...), sem deteccao.

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence

from openpyxl.utils import column_index_from_string

from normalizadores import eh_debito, normalizar_valor

logger = logging.getLogger(__name__)

CAMPOS = ("data", "valor", "descricao", "documento", "cpf_cnpj", "credito", "favorecido", "nome_tecnico")

_RE_DATA = re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}")
_RE_DOCUMENTO = re.compile(r"^\d{6,}$")
_RE_HEX_ID = re.compile(r"^[a-f0-9]{20,}$", re.IGNORECASE)
_RE_CPF_CNPJ = re.compile(r"\d{3}\.?\d{3}\.?\d{3}-?\d{2}|\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}")
_RE_MOEDA = re.compile(r"^-?\s*(R\$)?\s*-?\d{1,3}(\.\d{3})*,\d{2}\s*[DC]?$", re.IGNORECASE)


@dataclass
class MapeamentoColunas:
    data: Optional[str] = None
    valor: Optional[str] = None
    descricao: Optional[str] = None
    documento: Optional[str] = None
    cpf_cnpj: Optional[str] = None
    credito: Optional[str] = None
    favorecido: Optional[str] = None
    nome_tecnico: Optional[str] = None
    # True quando "valor" e uma coluna so de debitos (qualquer valor preenchido e saida)
    valor_eh_debito: bool = False
    fonte: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = {campo: getattr(self, campo) for campo in CAMPOS}
        out["valorEhDebito"] = self.valor_eh_debito
        out["fonte"] = dict(self.fonte)
        return out


# ==================================================================================
# INSTRUCOES DO MODELO (hint opcional)
# ==================================================================================

def colunas_das_instrucoes(instrucoes) -> List[Dict[str, Any]]:
    """
    Extrai as colunas da primeira aba das instrucoes.
    Aceita {sheets: [{columns: [{name, type, format, examples}]}]}
    e o formato antigo {planilhas: [{colunas: [{nome, tipo, formato, exemplos}]}]}.
    """
    if not isinstance(instrucoes, dict):
        return []

    abas = instrucoes.get("sheets") or instrucoes.get("planilhas") or []
    if not isinstance(abas, list) or not abas or not isinstance(abas[0], dict):
        return []

    colunas = abas[0].get("columns") or abas[0].get("colunas") or []
    out = []
    for c in colunas:
        if not isinstance(c, dict):
            continue
        exemplos = c.get("examples", c.get("exemplos")) or []
        out.append({
            "nome": c.get("name", c.get("nome")),
            "tipo": c.get("type", c.get("tipo")),
            "formato": c.get("format", c.get("formato")),
            "exemplos": [str(e) for e in exemplos] if isinstance(exemplos, list) else [],
        })
    return out


def encontrar_coluna(instrucoes, tipos_esperados: Sequence[str], palavras_chave: Sequence[str] = (),
                     disponiveis: Optional[Sequence[str]] = None, usadas: Sequence[str] = ()) -> Optional[str]:
    """
    Procura a coluna nas instrucoes: primeiro por palavra-chave nos exemplos,
    depois pelo tipo/formato detectado.
    """
    candidatas = [
        c for c in colunas_das_instrucoes(instrucoes)
        if c["nome"]
        and (disponiveis is None or c["nome"] in disponiveis)
        and c["nome"] not in usadas
    ]

    if palavras_chave:
        for c in candidatas:
            texto = " ".join(c["exemplos"]).lower()
            if any(p.lower() in texto for p in palavras_chave):
                logger.debug("Coluna '%s' encontrada por palavra-chave: %s", c["nome"], ", ".join(palavras_chave))
                return c["nome"]

    for c in candidatas:
        if c["tipo"] in tipos_esperados or c["formato"] in tipos_esperados:
            logger.debug("Coluna '%s' encontrada por tipo: %s", c["nome"], ", ".join(tipos_esperados))
            return c["nome"]

    return None


# ==================================================================================
# HEURISTICA
# ==================================================================================

def _texto(valor) -> str:
    if valor is None:
        return ""
    if isinstance(valor, float) and valor.is_integer():
        return str(int(valor))
    return str(valor).strip()


def parece_data(valor) -> bool:
    if isinstance(valor, date):
        return True
    return bool(_RE_DATA.match(_texto(valor)))


def parece_documento(valor) -> bool:
    if isinstance(valor, bool) or isinstance(valor, float) and not valor.is_integer():
        return False
    return bool(_RE_DOCUMENTO.match(_texto(valor)))


def parece_identificador(valor) -> bool:
    return bool(_RE_HEX_ID.match(_texto(valor)))


def parece_cpf_cnpj(valor) -> bool:
    return bool(_RE_CPF_CNPJ.search(_texto(valor)))


def parece_debito(valor) -> bool:
    return eh_debito(valor) and normalizar_valor(valor) is not None


def parece_moeda(valor) -> bool:
    if isinstance(valor, bool):
        return False
    if isinstance(valor, float):
        return not valor.is_integer()
    return bool(_RE_MOEDA.match(_texto(valor)))


@dataclass(frozen=True)
class RegraColuna:
    """Como reconhecer um campo: nome da coluna, formato da amostra e exclusoes."""
    campo: str
    rotulo: Optional[Pattern] = None
    amostra: Optional[Callable[[Any], bool]] = None
    excluir: Optional[Pattern] = None
    tipos: Sequence[str] = ()
    palavras_chave: Sequence[str] = ()


def _re(padrao: str) -> Pattern:
    return re.compile(padrao, re.IGNORECASE)


REGRAS_EXTRATO = [
    RegraColuna("data", rotulo=_re(r"\bdata\b|^dt\b"), amostra=parece_data,
                tipos=("data_texto", "data", "data_serial"), palavras_chave=("data",)),
    RegraColuna("documento", rotulo=_re(r"dcto|documento|^doc\b|^id$|identificador"),
                amostra=parece_documento, excluir=_re(r"data"),
                tipos=("numero_texto", "codigo"), palavras_chave=("dcto", "documento")),
    RegraColuna("descricao", rotulo=_re(r"lan[cç]amento|descri[cç]|hist[oó]rico"),
                excluir=_re(r"dcto|documento|cr[ée]dito|d[ée]bito|saldo|data"),
                tipos=("texto",), palavras_chave=("lançamento", "lancamento", "transferencia", "devolucao")),
    RegraColuna("valor", rotulo=_re(r"d[ée]bito|sa[ií]da"), excluir=_re(r"saldo"),
                palavras_chave=("débito", "debito")),
    RegraColuna("credito", rotulo=_re(r"cr[ée]dito|entrada"), excluir=_re(r"saldo"),
                palavras_chave=("crédito", "credito")),
]

# extrato sem coluna de debito: coluna de valor com sinal
REGRA_VALOR_EXTRATO = RegraColuna(
    "valor", rotulo=_re(r"valor|montante|quantia|amount"), amostra=parece_debito,
    excluir=_re(r"saldo"), tipos=("numero_decimal", "numero_texto"),
)

REGRAS_RELATORIO = [
    RegraColuna("data", rotulo=_re(r"\bdata\b|^dt\b"), amostra=parece_data,
                tipos=("data_texto", "data", "data_serial"), palavras_chave=("data pagamento",)),
    RegraColuna("documento", rotulo=_re(r"identificador|^id$|documento|c[oó]digo"),
                amostra=parece_identificador, excluir=_re(r"cpf|cnpj"),
                tipos=("codigo",), palavras_chave=("identificador",)),
    RegraColuna("cpf_cnpj", rotulo=_re(r"cpf|cnpj"), amostra=parece_cpf_cnpj,
                tipos=("cpf", "cnpj"), palavras_chave=("cpf/cnpj",)),
    RegraColuna("valor", rotulo=_re(r"valor"), amostra=parece_moeda, excluir=_re(r"mensalidade|saldo"),
                tipos=("numero_texto", "numero_decimal"), palavras_chave=("valor pago",)),
    RegraColuna("favorecido", rotulo=_re(r"favorecido|benefici[aá]rio"), excluir=_re(r"cpf|cnpj|t[ée]cnico")),
    RegraColuna("nome_tecnico", rotulo=_re(r"t[ée]cnico"), excluir=_re(r"cpf|cnpj|favorecido")),
    RegraColuna("descricao", rotulo=_re(r"descri[cç]|hist[oó]rico|observa"),
                excluir=_re(r"cpf|cnpj|data")),
]


def _aplicar_regra(regra: RegraColuna, cabecalho: Sequence[str], amostra: Dict[str, Any],
                   usadas: Sequence[str]) -> Optional[str]:
    livres = [c for c in cabecalho if c not in usadas and not (regra.excluir and regra.excluir.search(c))]

    if regra.rotulo is not None:
        for col in livres:
            if regra.rotulo.search(col):
                return col

    if regra.amostra is not None:
        for col in livres:
            if regra.amostra(amostra.get(col)):
                return col

    return None


def _resolver(regras: List[RegraColuna], cabecalho: Sequence[str], amostra: Dict[str, Any],
              instrucoes, mapa: MapeamentoColunas) -> MapeamentoColunas:
    usadas = [getattr(mapa, c) for c in CAMPOS if getattr(mapa, c)]

    for regra in regras:
        if getattr(mapa, regra.campo):
            continue

        col = None
        if instrucoes and (regra.tipos or regra.palavras_chave):
            col = encontrar_coluna(instrucoes, regra.tipos, regra.palavras_chave,
                                   disponiveis=cabecalho, usadas=usadas)
            if col:
                mapa.fonte[regra.campo] = "instrucoes"

        if not col:
            col = _aplicar_regra(regra, cabecalho, amostra, usadas)
            if col:
                mapa.fonte[regra.campo] = "heuristica"

        if col:
            setattr(mapa, regra.campo, col)
            usadas.append(col)

    return mapa


def resolver_colunas_extrato(cabecalho: Sequence[str], amostra: Dict[str, Any],
                             instrucoes=None) -> MapeamentoColunas:
    """Colunas do extrato bancario: data, documento, descricao, debito (valor), credito."""
    mapa = _resolver(REGRAS_EXTRATO, cabecalho, amostra, instrucoes, MapeamentoColunas())

    if mapa.valor:
        mapa.valor_eh_debito = True
    else:
        _resolver([REGRA_VALOR_EXTRATO], cabecalho, amostra, instrucoes, mapa)

    logger.info("Colunas detectadas no extrato: %s", mapa.to_dict())
    return mapa


def resolver_colunas_relatorio(cabecalho: Sequence[str], amostra: Dict[str, Any],
                               instrucoes=None) -> MapeamentoColunas:
    """Colunas do relatorio financeiro: data, identificador, cpf/cnpj, valor, favorecido..."""
    mapa = _resolver(REGRAS_RELATORIO, cabecalho, amostra, instrucoes, MapeamentoColunas())
    logger.info("Colunas detectadas no relatorio: %s", mapa.to_dict())
    return mapa


# ==================================================================================
# COLUNAS FIXAS (layout rigido)
# ==================================================================================

def letra_para_indice(letra: str) -> int:
    """Letra de coluna do Excel para indice base 0: "A" -> 0, "E" -> 4, "AA" -> 26."""
    if not isinstance(letra, str) or not letra.strip().isalpha():
        raise ValueError(f"Letra de coluna invalida: {letra!r}")
    return column_index_from_string(letra.strip().upper()) - 1


@dataclass(frozen=True)
class ColunasFixas:
    """Campos lidos por posicao (letra da coluna), sem deteccao automatica."""
    indices: Dict[str, int]
    linha_inicial: int = 2
    valor_eh_debito: bool = False

    @classmethod
    def de_dict(cls, dados: Dict[str, Any]) -> "ColunasFixas":
        indices = {}
        for campo, letra in dados.items():
            if campo in ("linha_inicial", "valor_eh_debito"):
                continue
            if campo not in CAMPOS:
                raise ValueError(f"Campo desconhecido em colunas fixas: {campo}")
            indices[campo] = letra_para_indice(letra)
        if "valor" not in indices:
            raise ValueError("Colunas fixas precisam indicar a coluna de 'valor'")
        return cls(
            indices=indices,
            linha_inicial=int(dados.get("linha_inicial", 2)),
            valor_eh_debito=bool(dados.get("valor_eh_debito", False)),
        )

    def ler(self, celulas: Sequence[Any], campo: str):
        idx = self.indices.get(campo)
        if idx is None or idx >= len(celulas):
            return None
        return celulas[idx]
