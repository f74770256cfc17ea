import base64
import io
from datetime import date, timedelta

import openpyxl
import pytest

from conciliador import conciliar_registros, quase_correspondencias, realizar_conciliacao
from config import ConfigConciliacao, config_de_dict
from conftest import extrato, relatorio
from modelos import CONFIANCA_ALTA, CONFIANCA_BAIXA, CONFIANCA_MEDIA, ConfiguracaoInvalidaError


def _chaves(resultado):
    return (
        [(c.relatorio.linha, c.extrato.linha, c.metodo) for c in resultado.correspondencias],
        [r.linha for r in resultado.ausentes_no_extrato],
        [r.linha for r in resultado.ausentes_no_relatorio],
    )


def _cenario_misto():
    base = date(2024, 3, 1)
    lado_extrato = [
        extrato(2, 100.00, base, "PIX Maria", "A1"),
        extrato(3, 100.00, base, "PIX Joao"),
        extrato(4, 250.00, base + timedelta(days=1), "BOLETO ENERGIA"),
        extrato(5, 99.50, base + timedelta(days=2), "PIX Carla"),
        extrato(6, 10.00, None, "TARIFA"),
        extrato(7, 100.00, None, "PIX"),
        extrato(8, 7.77, base, "SAQUE"),
    ]
    lado_relatorio = [
        relatorio(2, 100.00, base, "Joao", favorecido="Joao"),
        relatorio(3, 100.00, base, "Maria", documento="A1"),
        relatorio(4, 250.00, base + timedelta(days=1), "Energia"),
        relatorio(5, 100.00, base + timedelta(days=2), "Carla", favorecido="Carla Dias"),
        relatorio(6, 10.00, None, "Tarifa bancaria"),
        relatorio(7, 55.55, base, "Sem par"),
    ]
    return lado_extrato, lado_relatorio


def test_invariantes_de_contagem():
    lado_extrato, lado_relatorio = _cenario_misto()
    resultado = conciliar_registros(lado_extrato, lado_relatorio)

    n = len(resultado.correspondencias)
    assert n + len(resultado.ausentes_no_relatorio) == len(lado_extrato)
    assert n + len(resultado.ausentes_no_extrato) == len(lado_relatorio)

    usados_extrato = [c.extrato.linha for c in resultado.correspondencias]
    usados_relatorio = [c.relatorio.linha for c in resultado.correspondencias]
    assert len(set(usados_extrato)) == n
    assert len(set(usados_relatorio)) == n
    assert not set(usados_extrato) & {r.linha for r in resultado.ausentes_no_relatorio}
    assert not set(usados_relatorio) & {r.linha for r in resultado.ausentes_no_extrato}


def test_estrategias_escolhidas():
    lado_extrato, lado_relatorio = _cenario_misto()
    resultado = conciliar_registros(lado_extrato, lado_relatorio)
    pares = {c.relatorio.linha: (c.extrato.linha, c.metodo, c.confianca) for c in resultado.correspondencias}

    assert pares[3] == (2, "identificador_exato", CONFIANCA_ALTA)
    assert pares[2] == (3, "valor_data_exato", CONFIANCA_ALTA)
    assert pares[4] == (4, "valor_data_exato", CONFIANCA_ALTA)
    # 99,50 x 100,00: 0,5% de diferenca na mesma data
    assert pares[5] == (5, "valor_data_tolerancia", CONFIANCA_BAIXA)
    assert pares[6] == (6, "valor_palavras", CONFIANCA_BAIXA)
    assert [r.linha for r in resultado.ausentes_no_extrato] == [7]
    assert [r.linha for r in resultado.ausentes_no_relatorio] == [7, 8]


def test_correspondencias_ordenadas_pela_linha_do_relatorio():
    lado_extrato, lado_relatorio = _cenario_misto()
    resultado = conciliar_registros(lado_extrato, lado_relatorio)
    linhas = [c.relatorio.linha for c in resultado.correspondencias]
    assert linhas == sorted(linhas)


def test_deterministico():
    lado_extrato, lado_relatorio = _cenario_misto()
    primeiro = conciliar_registros(lado_extrato, lado_relatorio)
    segundo = conciliar_registros(list(lado_extrato), list(lado_relatorio))

    assert [c.to_dict() for c in primeiro.correspondencias] == [c.to_dict() for c in segundo.correspondencias]
    assert _chaves(primeiro) == _chaves(segundo)
    assert primeiro.sugestoes_ausentes_no_extrato == segundo.sugestoes_ausentes_no_extrato
    assert primeiro.sugestoes_ausentes_no_relatorio == segundo.sugestoes_ausentes_no_relatorio


def test_entrada_nao_e_alterada():
    lado_extrato, lado_relatorio = _cenario_misto()
    copia_extrato, copia_relatorio = list(lado_extrato), list(lado_relatorio)
    conciliar_registros(lado_extrato, lado_relatorio)
    assert lado_extrato == copia_extrato
    assert lado_relatorio == copia_relatorio


@pytest.mark.parametrize("estrategias", [None, ["valor_palavras"]])
def test_data_igual_vale_mais_que_palavras(estrategias):
    r = relatorio(2, 100.00, date(2024, 1, 5), "Pagamento A")
    s1 = extrato(2, 100.00, None, "Pagamento A B C")
    s2 = extrato(3, 100.00, date(2024, 1, 5), "X")
    config = config_de_dict({"estrategias": estrategias} if estrategias else {})

    resultado = conciliar_registros([s1, s2], [r], config)

    assert len(resultado.correspondencias) == 1
    assert resultado.correspondencias[0].extrato is s2
    assert resultado.ausentes_no_relatorio == [s1]


def test_palavras_desempatam_quando_datas_iguais():
    r = relatorio(2, 100.00, date(2024, 1, 5), "Pagamento Maria Souza")
    s1 = extrato(2, 100.00, date(2024, 1, 5), "PIX Joao")
    s2 = extrato(3, 100.00, date(2024, 1, 5), "PIX Maria Souza")
    resultado = conciliar_registros([s1, s2], [r])
    assert resultado.correspondencias[0].extrato is s2


def test_empate_total_fica_com_a_primeira_linha():
    r = relatorio(2, 50.00, date(2024, 1, 5), "X")
    s1 = extrato(9, 50.00, date(2024, 1, 5), "Y")
    s2 = extrato(4, 50.00, date(2024, 1, 5), "Y")
    resultado = conciliar_registros([s1, s2], [r])
    assert resultado.correspondencias[0].extrato is s2


def test_registros_identicos_sao_distintos():
    r1 = relatorio(2, 50.00, date(2024, 1, 5), "X")
    r2 = relatorio(2, 50.00, date(2024, 1, 5), "X")
    s = extrato(3, 50.00, date(2024, 1, 5), "X")
    resultado = conciliar_registros([s, s], [r1, r2])
    assert len(resultado.correspondencias) == 2
    assert resultado.ausentes_no_extrato == []


def test_sugestoes_de_registros_com_a_mesma_linha():
    r1 = relatorio(2, 100.00, None, "X")
    r2 = relatorio(2, 200.00, None, "X")
    s1 = extrato(5, 100.50, None, "Y")
    s2 = extrato(6, 201.00, None, "Y")
    config = config_de_dict({"estrategias": ["valor_data_exato"]})

    resultado = conciliar_registros([s1, s2], [r1, r2], config)

    assert resultado.ausentes_no_extrato == [r1, r2]
    sugestoes = resultado.sugestoes_ausentes_no_extrato
    assert [[s["linhaOriginal"] for s in lista] for lista in sugestoes] == [[5], [6]]


def test_identificador_parcial_e_tamanho_minimo():
    r = relatorio(2, 300.00, date(2024, 1, 5), "Fornecedor", documento="12")
    s = extrato(2, 310.00, date(2024, 2, 1), "TED", documento="991234")

    resultado = conciliar_registros([s], [r])
    assert resultado.correspondencias[0].metodo == "identificador_parcial"
    assert resultado.correspondencias[0].confianca == CONFIANCA_MEDIA

    resultado = conciliar_registros([s], [r], config_de_dict({"min_len_identificador": 3}))
    assert resultado.correspondencias == []


def test_cpf_ou_nome_na_descricao():
    dia = date(2024, 1, 5)
    r_cpf = relatorio(2, 200.00, dia, "Repasse", cpf_cnpj="97520578704")
    r_nome = relatorio(3, 301.00, dia, "Repasse", favorecido="Émerson Souza")
    s_cpf = extrato(2, 201.50, dia, "PIX ENVIADO 975.205.787-04")
    s_nome = extrato(3, 300.00, dia, "PIX ENVIADO EMERSON S")
    config = config_de_dict({"estrategias": ["cpf_nome_valor_data"]})

    resultado = conciliar_registros([s_cpf, s_nome], [r_cpf, r_nome], config)
    pares = {c.relatorio.linha: c.extrato.linha for c in resultado.correspondencias}
    assert pares == {2: 2, 3: 3}


def test_nome_curto_nao_conta():
    dia = date(2024, 1, 5)
    r = relatorio(2, 100.00, dia, "Repasse", favorecido="Lu Alves")
    s = extrato(2, 100.50, dia, "PIX ENVIADO LU")
    config = config_de_dict({"estrategias": ["cpf_nome_valor_data"]})
    assert conciliar_registros([s], [r], config).correspondencias == []


def test_tolerancia_relativa():
    dia = date(2024, 1, 5)
    r = relatorio(2, 1000.00, dia, "X")
    dentro = extrato(2, 1009.00, dia, "Y")
    fora = extrato(3, 1011.00, dia, "Y")
    config = config_de_dict({"estrategias": ["valor_data_tolerancia"]})

    assert conciliar_registros([dentro], [r], config).correspondencias
    assert not conciliar_registros([fora], [r], config).correspondencias


def test_tolerancia_prefere_valor_mais_proximo():
    dia = date(2024, 1, 5)
    r = relatorio(2, 1000.00, dia, "X")
    longe = extrato(2, 1009.00, dia, "Y")
    perto = extrato(3, 1001.00, dia, "Y")
    config = config_de_dict({"estrategias": ["valor_data_tolerancia"]})
    assert conciliar_registros([longe, perto], [r], config).correspondencias[0].extrato is perto


def test_estrategia_desconhecida():
    with pytest.raises(ConfiguracaoInvalidaError):
        conciliar_registros([], [], ConfigConciliacao(estrategias=["nao_existe"]))


def test_listas_vazias():
    resultado = conciliar_registros([], [])
    assert resultado.correspondencias == []
    assert resultado.total_extrato == resultado.total_relatorio == 0


def test_limite_bucket():
    r = relatorio(2, 10.00, None, "X")
    lado_extrato = [extrato(i, 10.00, None, "Y") for i in range(2, 12)]
    config = config_de_dict({"estrategias": ["valor_palavras"], "limite_bucket": 3})
    resultado = conciliar_registros(lado_extrato, [r], config)
    assert resultado.correspondencias[0].extrato.linha == 2
    assert len(resultado.ausentes_no_relatorio) == 9


def test_quase_correspondencias():
    r = relatorio(2, 100.00, date(2024, 1, 5), "X")
    s_longe = extrato(2, 100.90, date(2024, 2, 1), "Y")
    s_perto = extrato(3, 100.50, date(2024, 2, 1), "Y")
    s_fora = extrato(4, 150.00, date(2024, 2, 1), "Y")

    resultado = conciliar_registros([s_longe, s_perto, s_fora], [r])
    assert resultado.correspondencias == []

    sugestoes, = resultado.sugestoes_ausentes_no_extrato
    assert [s["linhaOriginal"] for s in sugestoes] == [3, 2]
    assert sugestoes[0]["diferenca"] == pytest.approx(0.5)
    assert sugestoes[0]["conciliado"] is False

    # o lado do extrato tambem recebe sugestoes, na ordem dos ausentes
    assert resultado.ausentes_no_relatorio == [s_longe, s_perto, s_fora]
    assert [[s["linhaOriginal"] for s in lista] for lista in resultado.sugestoes_ausentes_no_relatorio] == [[2], [2], []]


def test_quase_correspondencias_limite_e_conciliados():
    r = relatorio(2, 100.00)
    outros = [extrato(i, 100.00 + i / 100, None, "Y") for i in range(2, 10)]
    sugestoes = quase_correspondencias(r, outros, {0}, tolerancia=0.01, limite=3)
    assert [s["linhaOriginal"] for s in sugestoes] == [2, 3, 4]
    assert sugestoes[0]["conciliado"] is True
    assert quase_correspondencias(r, outros, set(), tolerancia=0.01, limite=0) == []


def test_realizar_conciliacao_fim_a_fim(bytes_extrato, bytes_relatorio):
    relatorio_final = realizar_conciliacao(bytes_extrato, bytes_relatorio, config=ConfigConciliacao())
    resumo = relatorio_final["resumo"]

    assert resumo["totalExtrato"] == 5
    assert resumo["totalRelatorio"] == 5
    assert resumo["totalEncontrados"] == 4
    assert resumo["naoEncontradosNoExtrato"]["quantidade"] == 1
    assert resumo["naoEncontradosNoExtrato"]["valorTotal"] == pytest.approx(999.99)
    assert resumo["naoEncontradosNoRelatorio"]["quantidade"] == 1
    assert resumo["taxaConciliacao"] == 80.0
    assert resumo["taxaConciliacaoFormatada"] == "80.00%"
    assert resumo["status"] == "divergencias_encontradas"

    ausente = relatorio_final["detalhes"]["naoEncontradosNoExtrato"][0]
    assert ausente["favorecido"] == "Pedro Alves"
    assert ausente["linhaOriginal"] == 6

    assert relatorio_final["planilhas"]["extrato"]["colunas"]["valor"] == "Débito (R$)"

    wb = openpyxl.load_workbook(io.BytesIO(base64.b64decode(relatorio_final["planilhaBase64"])))
    assert wb.sheetnames == ["1-Resumo", "2-Ausentes no Extrato", "3-Ausentes no Relatorio", "4-Conciliados"]
    assert wb["4-Conciliados"].max_row == 5


def test_realizar_conciliacao_colunas_fixas_invalidas(bytes_extrato, bytes_relatorio):
    config = ConfigConciliacao(colunas_fixas_extrato={"data": "A"})
    with pytest.raises(ConfiguracaoInvalidaError):
        realizar_conciliacao(bytes_extrato, bytes_relatorio, config=config)
