# detector_modelo.py
# Deteccao do modelo de uma planilha (colunas e tipos de dados)
#
# Gera o JSON de instrucoes usado na identificacao de colunas:
#   {"sheets": [{"name", "columns": [{"name", "type", "format", "examples"}]}]}
#
# Uso:
#   python detector_modelo.py planilha.xlsx [saida.json]
# Sem saida, grava instrucoes-<nome da planilha>.json ao lado do arquivo.

import argparse
import json
import logging
import os
import re
import sys
from collections import Counter
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from extrator import abrir_workbook, ler_aba

logger = logging.getLogger(__name__)

MAX_EXEMPLOS = 5
MAX_TAMANHO_EXEMPLO = 50

_RE_DATA_TEXTO = [
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}\s+\d{1,2}:\d{2}"),
]
_RE_NUMERO_TEXTO = re.compile(r"^-?\d+\.?\d*$")
_RE_CPF = re.compile(r"^\d{3}\.?\d{3}\.?\d{3}-?\d{2}$")
_RE_CNPJ = re.compile(r"^\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}$")
_RE_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_RE_TELEFONE = re.compile(r"^[\d\s()\-]+$")
_RE_CODIGO = re.compile(r"^[A-Z0-9\-_]+$", re.IGNORECASE)


def detectar_tipo(valor) -> str:
    """Tipo de dado de uma celula."""
    if valor is None or valor == "":
        return "vazio"
    if isinstance(valor, bool):
        return "booleano"
    if isinstance(valor, (datetime, date)):
        return "data"
    if isinstance(valor, (int, float)):
        return "numero_inteiro" if float(valor).is_integer() else "numero_decimal"
    if not isinstance(valor, str):
        return "desconhecido"

    if any(r.match(valor) for r in _RE_DATA_TEXTO):
        return "data_texto"
    if _RE_NUMERO_TEXTO.match(valor.strip()):
        return "numero_texto"
    if _RE_CPF.match(valor):
        return "cpf"
    if _RE_CNPJ.match(valor):
        return "cnpj"
    if _RE_EMAIL.match(valor):
        return "email"
    if _RE_TELEFONE.match(valor) and len(valor) >= 8:
        return "telefone"
    if _RE_CODIGO.match(valor) and len(valor) <= 50:
        return "codigo"
    return "texto"


def _exemplo(valor) -> str:
    if isinstance(valor, datetime):
        valor = valor.date() if valor.time() == datetime.min.time() else valor
    if isinstance(valor, date) and not isinstance(valor, datetime):
        return valor.strftime("%d/%m/%Y")
    if isinstance(valor, float) and valor.is_integer():
        return str(int(valor))
    return str(valor)[:MAX_TAMANHO_EXEMPLO]


def _como_numero(valor) -> Optional[float]:
    if isinstance(valor, bool):
        return None
    if isinstance(valor, (int, float)):
        return float(valor)
    try:
        return float(str(valor).strip())
    except ValueError:
        return None


def analisar_coluna(valores: List[Any], nome_coluna: str) -> Dict[str, Any]:
    """Tipo mais frequente, formato, contagens e exemplos de uma coluna."""
    preenchidos = [v for v in valores if v is not None and v != ""]

    if not preenchidos:
        return {
            "name": nome_coluna,
            "type": "vazio",
            "format": None,
            "totalValues": 0,
            "uniqueValues": 0,
            "examples": [],
            "typeDistribution": {},
        }

    distribuicao = Counter(detectar_tipo(v) for v in preenchidos)
    # empate: vale o tipo que apareceu primeiro
    tipo = distribuicao.most_common(1)[0][0]

    unicos = list(dict.fromkeys(preenchidos))

    formato = None
    if "data" in tipo:
        formato = "data"
    elif "numero" in tipo:
        numeros = [n for n in (_como_numero(v) for v in preenchidos) if n is not None]
        if numeros:
            formato = f"numero: {min(numeros):g} a {max(numeros):g}"
    elif tipo in ("cpf", "cnpj", "email", "telefone"):
        formato = tipo

    return {
        "name": nome_coluna,
        "type": tipo,
        "format": formato,
        "totalValues": len(preenchidos),
        "uniqueValues": len(unicos),
        "examples": [_exemplo(v) for v in unicos[:MAX_EXEMPLOS]],
        "typeDistribution": dict(distribuicao),
    }


def detectar_modelo(conteudo: bytes, nome_arquivo: str, detectado_em: Optional[datetime] = None) -> Dict[str, Any]:
    """Analisa todas as abas do arquivo .xlsx."""
    wb = abrir_workbook(conteudo)

    abas = []
    for ws in wb.worksheets:
        logger.info("Analisando aba: %s", ws.title)
        planilha = ler_aba(ws)

        if not planilha.linhas:
            abas.append({"name": planilha.nome_aba, "totalRows": 0, "totalColumns": 0, "columns": []})
            continue

        logger.info("Encontradas %d colunas: %s", len(planilha.cabecalho), ", ".join(planilha.cabecalho))
        colunas = [
            analisar_coluna([linha.valores.get(nome) for linha in planilha.linhas], nome)
            for nome in planilha.cabecalho
        ]
        abas.append({
            "name": planilha.nome_aba,
            "headerRow": planilha.linha_cabecalho,
            "totalRows": len(planilha.linhas),
            "totalColumns": len(planilha.cabecalho),
            "columns": colunas,
        })

    return {
        "file": os.path.basename(nome_arquivo),
        "detectedAt": (detectado_em or datetime.now()).isoformat(),
        "totalSheets": len(abas),
        "sheets": abas,
    }


def nome_instrucoes(nome_arquivo: str) -> str:
    """planilha.xlsx -> instrucoes-planilha.json"""
    base = os.path.splitext(os.path.basename(nome_arquivo))[0]
    return f"instrucoes-{base}.json"


def carregar_instrucoes(pasta: str, nome_arquivo: str) -> Optional[dict]:
    """Instrucoes salvas para a planilha (None se nao houver ou se estiver corrompida)."""
    caminho = os.path.join(pasta, nome_instrucoes(nome_arquivo))
    if not os.path.exists(caminho):
        return None
    try:
        with open(caminho, "r", encoding="utf-8") as f:
            instrucoes = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Instrucoes em %s ignoradas: %s", caminho, e)
        return None
    logger.info("Usando instrucoes de %s", caminho)
    return instrucoes


def salvar_modelo(modelo: Dict[str, Any], caminho: str):
    """Salva modelo em arquivo JSON"""
    os.makedirs(os.path.dirname(caminho) or ".", exist_ok=True)
    with open(caminho, "w", encoding="utf-8") as f:
        json.dump(modelo, f, ensure_ascii=False, indent=2)
    logger.info("Modelo salvo em: %s", caminho)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Detecta colunas e tipos de dados de uma planilha .xlsx.")
    parser.add_argument("planilha", help="Caminho do arquivo .xlsx")
    parser.add_argument("saida", nargs="?", help="Arquivo JSON de saida (padrao: instrucoes-<planilha>.json)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    with open(args.planilha, "rb") as f:
        modelo = detectar_modelo(f.read(), args.planilha)

    saida = args.saida or os.path.join(os.path.dirname(args.planilha), nome_instrucoes(args.planilha))
    salvar_modelo(modelo, saida)

    for aba in modelo["sheets"]:
        print(f"{aba['name']}: {aba['totalRows']} linhas")
        for col in aba["columns"]:
            print(f"  - {col['name']}: {col['type']}" + (f" ({col['format']})" if col["format"] else ""))
    return 0


if __name__ == "__main__":
    sys.exit(main())
