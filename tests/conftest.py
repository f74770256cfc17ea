import io
from datetime import date, datetime

import openpyxl
import pytest

from modelos import ORIGEM_EXTRATO, ORIGEM_RELATORIO, RegistroPagamento


def criar_xlsx(*abas):
    """Cada aba: (titulo, linhas). Retorna os bytes do .xlsx."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for titulo, linhas in abas:
        ws = wb.create_sheet(titulo)
        for linha in linhas:
            ws.append(list(linha))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def extrato(linha, valor, data=None, descricao="", documento=None):
    return RegistroPagamento(linha=linha, valor=valor, origem=ORIGEM_EXTRATO, data=data,
                             descricao=descricao, documento=documento)


def relatorio(linha, valor, data=None, descricao="", documento=None, cpf_cnpj=None, favorecido=""):
    return RegistroPagamento(linha=linha, valor=valor, origem=ORIGEM_RELATORIO, data=data,
                             descricao=descricao, documento=documento, cpf_cnpj=cpf_cnpj,
                             favorecido=favorecido)


@pytest.fixture
def bytes_extrato():
    """5 debitos, 1 credito, com bloco de titulo antes do cabecalho."""
    return criar_xlsx(("Extrato", [
        ["Extrato de Conta Corrente"],
        ["Agencia 1234", "Conta 56789-0"],
        ["Data", "Lançamento", "Dcto.", "Crédito (R$)", "Débito (R$)", "Saldo (R$)"],
        ["05/01/2024", "PIX ENVIADO Maria Souza", "1001", None, -150.00, 850.00],
        ["05/01/2024", "PIX ENVIADO Joao Lima", "1002", None, -320.50, 529.50],
        ["06/01/2024", "TED RECEBIDA", "1003", 1000.00, None, 1529.50],
        ["08/01/2024", "PAGAMENTO BOLETO", "1004", None, -89.90, 1439.60],
        ["09/01/2024", "PIX ENVIADO Carla Dias", "1005", None, -1200.00, 239.60],
        ["10/01/2024", "TARIFA PACOTE", "1006", None, -45.00, 194.60],
    ]))


@pytest.fixture
def bytes_relatorio():
    """5 pagamentos: 4 batem com o extrato, 1 (999,99) nao existe no extrato."""
    return criar_xlsx(("Pagamentos", [
        ["Data Pagamento", "Favorecido", "Valor Pago"],
        [datetime(2024, 1, 5), "Maria Souza", 150.00],
        [datetime(2024, 1, 5), "Joao Lima", 320.50],
        [datetime(2024, 1, 8), "Boleto Fornecedor", 89.90],
        [datetime(2024, 1, 9), "Carla Dias", 1200.00],
        [datetime(2024, 1, 9), "Pedro Alves", 999.99],
    ]))


@pytest.fixture
def dia():
    return date(2024, 1, 5)
