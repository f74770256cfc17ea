# normalizadores.py
# Normalizacao de valores, datas e textos vindos das planilhas
#
# Regras de valores (formato BR e formato US misturados nos exports):
# - "1.234,56" -> 1234.56   (ponto = milhar, virgula = decimal)
# - "-123,00"  -> 123.00    (virgula = decimal, sinal descartado)
# - "123.00"   -> 123.00    (um ponto com ate 2 casas = decimal)
# - "1.234"    -> 1234.00   (ponto com 3 casas = milhar)
# - "1,234.56" -> 1.23456   (com os dois separadores, sempre ponto = milhar)

import numbers
import re
import unicodedata
import warnings
from datetime import date, datetime
from typing import Optional

import pandas as pd
from openpyxl.utils.datetime import from_excel

_MOEDA = re.compile(r"R\$|US\$|\$|€")
_ESPACOS = re.compile(r"\s+")
_SUFIXO_DC = re.compile(r"(?<=\d)[DC]$", re.IGNORECASE)
_NUMERO_LIMPO = re.compile(r"\d+(?:\.\d*)?|\.\d+")

_DATA_BR = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})(?:$|[\sT])")
_DATA_ISO = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:$|[\sT])")
_NUMERO_TEXTO = re.compile(r"^-?\d+(?:[.,]\d+)?$")
_HORA = re.compile(r"\d{1,2}:\d{2}(?::\d{2})?")
_NOME_MES = re.compile(r"[A-Za-z]{3,}")

ANO_MIN = 1900
ANO_MAX = 2100
SERIAL_EXCEL_MAX = 2958465  # 31/12/9999


def _vazio(valor) -> bool:
    if valor is None:
        return True
    if isinstance(valor, float) and valor != valor:
        return True
    if valor is pd.NaT:
        return True
    if isinstance(valor, str):
        s = valor.strip()
        return s == "" or s.lower() == "nan"
    return False


def _limpar_numero(valor) -> str:
    s = _MOEDA.sub("", str(valor))
    return _ESPACOS.sub("", s)


# ==================================================================================
# VALORES
# ==================================================================================

def normalizar_valor(valor) -> Optional[float]:
    """
    Converte valor de celula (texto BR/US ou numero) para float absoluto.
    Retorna None quando vazio ou invalido.
    """
    if isinstance(valor, bool) or _vazio(valor):
        return None

    if isinstance(valor, numbers.Real):
        return abs(float(valor))

    s = _limpar_numero(valor)
    s = _SUFIXO_DC.sub("", s)
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1]
    s = s.lstrip("+-")

    if not s:
        return None

    if "," in s and "." in s:
        # ponto = milhar, virgula = decimal
        s = s.replace(".", "").replace(",", ".")
    elif "," in s:
        s = s.replace(",", ".")
    elif "." in s:
        fracao = s.partition(".")[2]
        if s.count(".") > 1 or len(fracao) > 2:
            s = s.replace(".", "")

    # "1,23E+2", "inf", "nan" etc. nao sao aceitos
    if not _NUMERO_LIMPO.fullmatch(s):
        return None

    try:
        return abs(float(s))
    except ValueError:
        return None


def eh_debito(valor) -> bool:
    """Indica se o valor bruto representa saida (negativo, "(x)" ou sufixo D)."""
    if isinstance(valor, bool) or _vazio(valor):
        return False

    if isinstance(valor, numbers.Real):
        return valor < 0

    s = _limpar_numero(valor)
    if s.startswith("-"):
        return True
    if s.startswith("(") and s.endswith(")"):
        return True
    return bool(re.search(r"\dD$", s, re.IGNORECASE))


# ==================================================================================
# DATAS
# ==================================================================================

def _montar_data(dia: int, mes: int, ano: int) -> Optional[date]:
    if not (1 <= dia <= 31 and 1 <= mes <= 12 and ANO_MIN < ano < ANO_MAX):
        return None
    try:
        d = date(ano, mes, dia)
    except ValueError:
        # 29/02 em ano nao bissexto, 31/04 ...
        return None
    if (d.day, d.month, d.year) != (dia, mes, ano):
        return None
    return d


def _data_no_intervalo(d: date) -> Optional[date]:
    return d if ANO_MIN < d.year < ANO_MAX else None


def data_serial_excel(serial) -> Optional[date]:
    """Converte numero serial do Excel (sistema 1900) para data."""
    try:
        serial = float(serial)
    except (TypeError, ValueError):
        return None
    if serial != serial or not (0 < serial <= SERIAL_EXCEL_MAX):
        return None
    try:
        convertido = from_excel(serial)
    except (ValueError, OverflowError):
        return None
    if isinstance(convertido, datetime):
        return _data_no_intervalo(convertido.date())
    if isinstance(convertido, date):
        return _data_no_intervalo(convertido)
    return None


def _data_completa(texto: str) -> bool:
    """Ano com 4 digitos, mais dia e mes (numericos ou mes por extenso), fora da hora."""
    sem_hora = _HORA.sub(" ", texto)
    if not re.search(r"\d{4}", sem_hora):
        return False
    grupos = re.findall(r"\d+", sem_hora)
    return len(grupos) >= 3 or (len(grupos) == 2 and bool(_NOME_MES.search(sem_hora)))


def normalizar_data(valor) -> Optional[date]:
    """
    Converte data em varios formatos para datetime.date (hora descartada).
    Ordem: objeto data -> DD/MM/AAAA -> AAAA-MM-DD -> serial Excel (numeros) -> parser generico.
    """
    if isinstance(valor, bool) or _vazio(valor):
        return None

    if isinstance(valor, datetime):
        return valor.date()
    if isinstance(valor, date):
        return valor
    if isinstance(valor, numbers.Real):
        return data_serial_excel(valor)

    texto = str(valor).strip()

    m = _DATA_BR.match(texto)
    if m:
        dia, mes, ano = (int(g) for g in m.groups())
        if len(m.group(3)) == 2:
            ano += 2000
        return _montar_data(dia, mes, ano)

    m = _DATA_ISO.match(texto)
    if m:
        ano, mes, dia = (int(g) for g in m.groups())
        return _montar_data(dia, mes, ano)

    if _NUMERO_TEXTO.match(texto):
        return data_serial_excel(texto.replace(",", "."))

    # o parser generico completa dia/mes/ano faltantes com a data de hoje
    if not _data_completa(texto):
        return None

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            ts = pd.to_datetime(texto, dayfirst=True, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return _data_no_intervalo(ts.date())


# ==================================================================================
# TEXTOS
# ==================================================================================

def remover_acentos(texto) -> str:
    if texto is None:
        return ""
    decomposto = unicodedata.normalize("NFD", str(texto))
    return "".join(c for c in decomposto if not unicodedata.combining(c))


def normalizar_texto_busca(texto) -> str:
    """Minusculas e sem acentos, para comparar descricoes."""
    if _vazio(texto):
        return ""
    return remover_acentos(texto).lower().strip()


def palavras(texto) -> list:
    return [p for p in normalizar_texto_busca(texto).split() if p]


def contar_palavras_comuns(texto_a, texto_b) -> int:
    """
    Conta palavras de texto_a presentes em texto_b.
    Repeticoes em texto_a contam uma vez cada.
    """
    conjunto_b = set(palavras(texto_b))
    if not conjunto_b:
        return 0
    return sum(1 for p in palavras(texto_a) if p in conjunto_b)


def _texto_celula(valor) -> str:
    # ids numericos chegam como float (1614494.0)
    if isinstance(valor, float) and valor.is_integer():
        return str(int(valor))
    return str(valor)


def normalizar_documento(valor) -> Optional[str]:
    if isinstance(valor, bool) or _vazio(valor):
        return None
    s = _texto_celula(valor).strip().upper()
    return s or None


def normalizar_cpf_cnpj(valor) -> Optional[str]:
    if isinstance(valor, bool) or _vazio(valor):
        return None
    s = re.sub(r"[.\-/\s]", "", _texto_celula(valor))
    return s or None


def primeiro_nome(texto) -> str:
    partes = palavras(texto)
    return partes[0] if partes else ""
