# relatorio.py
# Relatorio da conciliacao: resumo/detalhes em JSON e planilha de divergencias

import base64
import io
from datetime import datetime
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from modelos import ORIGEM_RELATORIO, RegistroPagamento, ResultadoConciliacao

STATUS_CONCILIADO = "totalmente_conciliado"
STATUS_DIVERGENCIAS = "divergencias_encontradas"

MOTIVO_AUSENTE_NO_EXTRATO = "Pagamento presente no Relatorio Financeiro mas AUSENTE no Extrato Bancario"
MOTIVO_AUSENTE_NO_RELATORIO = "Pagamento presente no Extrato Bancario mas AUSENTE no Relatorio Financeiro"


def formatar_brl(valor):
    return f"R$ {valor:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def taxa_conciliacao(resultado: ResultadoConciliacao) -> float:
    """Correspondencias / registros do relatorio x 100 (0.0 sem registros)."""
    if not resultado.total_relatorio:
        return 0.0
    return round(len(resultado.correspondencias) / resultado.total_relatorio * 100, 2)


def _soma(registros: List[RegistroPagamento]) -> float:
    return round(sum(r.valor for r in registros), 2)


def _com_sugestoes(registros, sugestoes):
    """Pareia cada ausente com suas possiveis correspondencias (vazio quando nao calculadas)."""
    return [(r, sugestoes[i] if i < len(sugestoes) else []) for i, r in enumerate(registros)]


def _ausente_dict(registro: RegistroPagamento, motivo: str, sugestoes) -> Dict[str, Any]:
    dados = registro.to_dict()
    data = registro.data_original if registro.data_original is not None else registro.data
    if registro.origem == ORIGEM_RELATORIO:
        complemento = registro.favorecido
    else:
        complemento = f"Descricao: {registro.descricao}"
    dados["motivo"] = motivo
    dados["detalhes"] = f"Valor: {formatar_brl(registro.valor)}, Data: {data or ''}, {complemento}".rstrip(", ")
    dados["possiveisCorrespondencias"] = sugestoes
    return dados


def montar_relatorio(resultado: ResultadoConciliacao, extracao_extrato=None, extracao_relatorio=None,
                     gerado_em: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Resumo + detalhes da conciliacao, apenas com tipos aceitos em JSON.
    gerado_em permite fixar o horario (saida reprodutivel).
    """
    gerado_em = gerado_em or datetime.now()

    faltante_extrato = _soma(resultado.ausentes_no_extrato)
    faltante_relatorio = _soma(resultado.ausentes_no_relatorio)
    conciliado = round(sum(c.relatorio.valor for c in resultado.correspondencias), 2)
    taxa = taxa_conciliacao(resultado)

    divergencias = resultado.ausentes_no_extrato or resultado.ausentes_no_relatorio
    ausentes_extrato = _com_sugestoes(resultado.ausentes_no_extrato, resultado.sugestoes_ausentes_no_extrato)
    ausentes_relatorio = _com_sugestoes(resultado.ausentes_no_relatorio, resultado.sugestoes_ausentes_no_relatorio)

    por_confianca: Dict[str, int] = {}
    for c in resultado.correspondencias:
        por_confianca[c.confianca] = por_confianca.get(c.confianca, 0) + 1

    relatorio = {
        "dataConciliacao": gerado_em.isoformat(),
        "resumo": {
            "totalExtrato": resultado.total_extrato,
            "totalRelatorio": resultado.total_relatorio,
            "totalEncontrados": len(resultado.correspondencias),
            "naoEncontradosNoExtrato": {
                "quantidade": len(resultado.ausentes_no_extrato),
                "valorTotal": faltante_extrato,
                "descricao": "Pagamentos presentes no RELATORIO FINANCEIRO mas AUSENTES no EXTRATO BANCARIO",
            },
            "naoEncontradosNoRelatorio": {
                "quantidade": len(resultado.ausentes_no_relatorio),
                "valorTotal": faltante_relatorio,
                "descricao": "Pagamentos presentes no EXTRATO BANCARIO mas AUSENTES no RELATORIO FINANCEIRO",
            },
            "valorTotalConciliado": conciliado,
            "valorTotalFaltanteNoExtrato": faltante_extrato,
            "valorTotalFaltanteNoRelatorio": faltante_relatorio,
            "valorTotalConciliadoFormatado": formatar_brl(conciliado),
            "taxaConciliacao": taxa,
            "taxaConciliacaoFormatada": f"{taxa:.2f}%",
            "correspondenciasPorConfianca": dict(sorted(por_confianca.items())),
            "status": STATUS_DIVERGENCIAS if divergencias else STATUS_CONCILIADO,
        },
        "detalhes": {
            "encontrados": [c.to_dict() for c in resultado.correspondencias],
            "naoEncontradosNoExtrato": [
                _ausente_dict(r, MOTIVO_AUSENTE_NO_EXTRATO, s)
                for r, s in ausentes_extrato
            ],
            "naoEncontradosNoRelatorio": [
                _ausente_dict(r, MOTIVO_AUSENTE_NO_RELATORIO, s)
                for r, s in ausentes_relatorio
            ],
        },
    }

    if extracao_extrato is not None or extracao_relatorio is not None:
        relatorio["planilhas"] = {
            "extrato": extracao_extrato.to_dict() if extracao_extrato is not None else None,
            "relatorio": extracao_relatorio.to_dict() if extracao_relatorio is not None else None,
        }

    return relatorio


# ==================================================================================
# PLANILHA DE DIVERGENCIAS
# ==================================================================================

def adicionar_cabecalho(ws, headers, row_start=1):
    """Adiciona cabecalho formatado"""
    fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    font = Font(bold=True, color="FFFFFF")
    alignment = Alignment(horizontal="center", vertical="center")

    for col, header in enumerate(headers, 1):
        cell = ws.cell(row_start, col, header)
        cell.fill = fill
        cell.font = font
        cell.alignment = alignment


def _ajustar_larguras(ws, larguras):
    for col, largura in enumerate(larguras, 1):
        ws.column_dimensions[get_column_letter(col)].width = largura


def _data_br(registro: RegistroPagamento):
    if registro.data:
        return registro.data.strftime("%d/%m/%Y")
    return "" if registro.data_original is None else str(registro.data_original)


def _escrever_valor(ws, row, col, valor):
    ws.cell(row, col, float(valor))
    ws.cell(row, col).number_format = '#,##0.00'


def _criar_aba_resumo(wb, resultado: ResultadoConciliacao):
    ws = wb.active
    ws.title = "1-Resumo"

    ws['A1'] = "RESUMO DA CONCILIACAO BANCARIA"
    ws['A1'].font = Font(bold=True, size=14, color="366092")
    ws.merge_cells('A1:C1')

    adicionar_cabecalho(ws, ["DESCRICAO", "QUANTIDADE", "VALOR (R$)"], row_start=3)

    linhas = [
        ("Pagamentos no Extrato", resultado.total_extrato, None),
        ("Pagamentos no Relatorio", resultado.total_relatorio, None),
        ("Conciliados", len(resultado.correspondencias),
         sum(c.relatorio.valor for c in resultado.correspondencias)),
        ("Ausentes no Extrato", len(resultado.ausentes_no_extrato), _soma(resultado.ausentes_no_extrato)),
        ("Ausentes no Relatorio", len(resultado.ausentes_no_relatorio), _soma(resultado.ausentes_no_relatorio)),
    ]
    row = 4
    for descricao, quantidade, valor in linhas:
        ws.cell(row, 1, descricao).font = Font(bold=True)
        ws.cell(row, 2, quantidade)
        if valor is not None:
            _escrever_valor(ws, row, 3, valor)
        row += 1

    ws.cell(row, 1, "Taxa de Conciliacao").font = Font(bold=True, color="366092")
    ws.cell(row, 2, f"{taxa_conciliacao(resultado):.2f}%").font = Font(bold=True, color="366092")
    ws.cell(row, 2).fill = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")

    _ajustar_larguras(ws, [30, 20, 20])


def _criar_aba_ausentes(wb, titulo, registros: List[RegistroPagamento], sugestoes_por_registro):
    ws = wb.create_sheet(titulo)
    adicionar_cabecalho(ws, ["Linha", "Data", "Valor", "Descricao", "Documento", "CPF/CNPJ",
                             "Possiveis Correspondencias (linhas)"])

    fill = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    row = 2
    for reg, sugestoes in _com_sugestoes(registros, sugestoes_por_registro):
        ws.cell(row, 1, reg.linha)
        ws.cell(row, 2, _data_br(reg))
        _escrever_valor(ws, row, 3, reg.valor)
        ws.cell(row, 4, reg.descricao)
        ws.cell(row, 5, reg.documento or "")
        ws.cell(row, 6, reg.cpf_cnpj or "")
        ws.cell(row, 7, ", ".join(str(s["linhaOriginal"]) for s in sugestoes))
        for col in range(1, 8):
            ws.cell(row, col).fill = fill
        row += 1

    _ajustar_larguras(ws, [8, 12, 15, 45, 22, 18, 30])


def _criar_aba_conciliados(wb, resultado: ResultadoConciliacao):
    ws = wb.create_sheet("4-Conciliados")
    adicionar_cabecalho(ws, ["Linha Relatorio", "Linha Extrato", "Data Relatorio", "Data Extrato",
                             "Valor Relatorio", "Valor Extrato", "Diferenca", "Metodo", "Confianca",
                             "Descricao Relatorio", "Descricao Extrato"])

    fill = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    row = 2
    for c in resultado.correspondencias:
        ws.cell(row, 1, c.relatorio.linha)
        ws.cell(row, 2, c.extrato.linha)
        ws.cell(row, 3, _data_br(c.relatorio))
        ws.cell(row, 4, _data_br(c.extrato))
        _escrever_valor(ws, row, 5, c.relatorio.valor)
        _escrever_valor(ws, row, 6, c.extrato.valor)
        _escrever_valor(ws, row, 7, round(abs(c.extrato.valor - c.relatorio.valor), 2))
        ws.cell(row, 8, c.metodo)
        ws.cell(row, 9, c.confianca)
        ws.cell(row, 10, c.relatorio.descricao)
        ws.cell(row, 11, c.extrato.descricao)
        for col in range(1, 12):
            ws.cell(row, col).fill = fill
        row += 1

    _ajustar_larguras(ws, [15, 14, 14, 14, 16, 16, 12, 22, 11, 40, 40])


def gerar_planilha_divergencias(resultado: ResultadoConciliacao) -> bytes:
    """Planilha .xlsx com resumo, divergencias de cada lado e conciliados."""
    wb = Workbook()
    _criar_aba_resumo(wb, resultado)
    _criar_aba_ausentes(wb, "2-Ausentes no Extrato", resultado.ausentes_no_extrato,
                        resultado.sugestoes_ausentes_no_extrato)
    _criar_aba_ausentes(wb, "3-Ausentes no Relatorio", resultado.ausentes_no_relatorio,
                        resultado.sugestoes_ausentes_no_relatorio)
    _criar_aba_conciliados(wb, resultado)

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def planilha_base64(resultado: ResultadoConciliacao) -> str:
    return base64.b64encode(gerar_planilha_divergencias(resultado)).decode("ascii")
