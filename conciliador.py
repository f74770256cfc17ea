# conciliador.py
# Conciliacao: Extrato Bancario x Relatorio Financeiro
#
# Regras:
# - Todos os pares possiveis sao avaliados antes de qualquer escolha
# - Cada par recebe a primeira estrategia (na ordem configurada) que o aceita
# - Ordenacao: prioridade da estrategia, pontuacao, linha do relatorio, linha do extrato
# - Cada registro entra em no maximo uma correspondencia
# - Sem par: vai para ausentes_no_extrato / ausentes_no_relatorio (ordem original)

import logging
from typing import Dict, List, Optional, Sequence

from colunas import ColunasFixas
from config import ConfigConciliacao, carregar_config
from estrategias import Estrategia, IndiceExtrato, montar_estrategias
from extrator import extrair_extrato, extrair_relatorio, ler_primeira_aba
from modelos import (
    Candidato,
    ConfiguracaoInvalidaError,
    Correspondencia,
    RegistroPagamento,
    ResultadoConciliacao,
)
from relatorio import montar_relatorio, planilha_base64

logger = logging.getLogger(__name__)


def gerar_candidatos(extrato: Sequence[RegistroPagamento], relatorio: Sequence[RegistroPagamento],
                     estrategias: List[Estrategia], indice: IndiceExtrato) -> List[Candidato]:
    """Todos os pares (relatorio x extrato) aceitos por alguma estrategia."""
    total = len(estrategias)
    candidatos = []

    for pos_r, reg_rel in enumerate(relatorio):
        posicoes = set()
        for estrategia in estrategias:
            posicoes.update(estrategia.candidatos(reg_rel, indice))

        for pos_e in sorted(posicoes):
            reg_ext = extrato[pos_e]
            for ordem, estrategia in enumerate(estrategias):
                pontuacao = estrategia.pontuar(reg_rel, reg_ext)
                if pontuacao is None:
                    continue
                candidatos.append(Candidato(
                    extrato=reg_ext,
                    relatorio=reg_rel,
                    metodo=estrategia.nome,
                    confianca=estrategia.confianca,
                    prioridade=total - ordem,
                    pontuacao=pontuacao,
                    pos_extrato=pos_e,
                    pos_relatorio=pos_r,
                ))
                break

    return candidatos


def quase_correspondencias(registro: RegistroPagamento, outros: Sequence[RegistroPagamento],
                           conciliados: set, tolerancia: float, limite: int) -> List[Dict]:
    """
    Registros do outro lado com valor proximo (diagnostico para revisao manual).
    Ordem: menor diferenca absoluta, depois linha.
    """
    if limite <= 0:
        return []

    proximos = []
    for pos, outro in enumerate(outros):
        diferenca = abs(outro.valor - registro.valor)
        if outro.centavos != registro.centavos and diferenca > tolerancia * max(outro.valor, registro.valor):
            continue
        proximos.append((round(diferenca, 2), outro.linha, pos, outro))

    proximos.sort(key=lambda p: (p[0], p[1], p[2]))

    return [
        {
            "linhaOriginal": outro.linha,
            "origem": outro.origem,
            "valor": round(outro.valor, 2),
            "data": outro.data.isoformat() if outro.data else None,
            "descricao": outro.descricao,
            "diferenca": diferenca,
            "conciliado": pos in conciliados,
        }
        for diferenca, _, pos, outro in proximos[:limite]
    ]


def conciliar_registros(extrato: Sequence[RegistroPagamento], relatorio: Sequence[RegistroPagamento],
                        config: Optional[ConfigConciliacao] = None) -> ResultadoConciliacao:
    """
    Cruza os pagamentos do extrato com os do relatorio.
    Nao altera as listas recebidas; mesma entrada gera sempre a mesma saida.
    """
    config = config or ConfigConciliacao()
    extrato = list(extrato)
    relatorio = list(relatorio)

    estrategias = montar_estrategias(config)
    indice = IndiceExtrato(extrato, limite_bucket=config.limite_bucket)

    candidatos = gerar_candidatos(extrato, relatorio, estrategias, indice)
    candidatos.sort(key=Candidato.chave_ordenacao)
    logger.debug("%d pares candidatos avaliados", len(candidatos))

    usados_extrato = set()
    usados_relatorio = set()
    correspondencias = []
    por_metodo: Dict[str, int] = {}

    for c in candidatos:
        if c.pos_extrato in usados_extrato or c.pos_relatorio in usados_relatorio:
            continue
        usados_extrato.add(c.pos_extrato)
        usados_relatorio.add(c.pos_relatorio)
        correspondencias.append((c.pos_relatorio, c.pos_extrato, Correspondencia(
            extrato=c.extrato,
            relatorio=c.relatorio,
            metodo=c.metodo,
            confianca=c.confianca,
            pontuacao=c.pontuacao,
        )))
        por_metodo[c.metodo] = por_metodo.get(c.metodo, 0) + 1

    correspondencias.sort(key=lambda t: (t[2].relatorio.linha, t[2].extrato.linha, t[0], t[1]))

    resultado = ResultadoConciliacao(
        correspondencias=[t[2] for t in correspondencias],
        ausentes_no_extrato=[r for i, r in enumerate(relatorio) if i not in usados_relatorio],
        ausentes_no_relatorio=[r for i, r in enumerate(extrato) if i not in usados_extrato],
        total_extrato=len(extrato),
        total_relatorio=len(relatorio),
    )

    resultado.sugestoes_ausentes_no_extrato = [
        quase_correspondencias(reg, extrato, usados_extrato, config.tolerancia_quase, config.limite_quase)
        for reg in resultado.ausentes_no_extrato
    ]
    resultado.sugestoes_ausentes_no_relatorio = [
        quase_correspondencias(reg, relatorio, usados_relatorio, config.tolerancia_quase, config.limite_quase)
        for reg in resultado.ausentes_no_relatorio
    ]

    for metodo in sorted(por_metodo):
        logger.debug("  %s: %d", metodo, por_metodo[metodo])
    logger.info(
        "Conciliacao: %d correspondencias, %d ausentes no extrato, %d ausentes no relatorio",
        len(resultado.correspondencias),
        len(resultado.ausentes_no_extrato),
        len(resultado.ausentes_no_relatorio),
    )
    return resultado


def _colunas_fixas(dados, origem: str) -> Optional[ColunasFixas]:
    if not dados:
        return None
    try:
        return ColunasFixas.de_dict(dados)
    except ValueError as e:
        raise ConfiguracaoInvalidaError(f"[Config] colunas_fixas_{origem} invalido: {e}") from e


def realizar_conciliacao(conteudo_extrato: bytes, conteudo_relatorio: bytes,
                         instrucoes_extrato=None, instrucoes_relatorio=None,
                         config: Optional[ConfigConciliacao] = None,
                         gerar_planilha: bool = True) -> dict:
    """
    Fluxo completo: le as duas planilhas, extrai os pagamentos, concilia
    e monta o relatorio (JSON + planilha de divergencias em base64).
    """
    config = config or carregar_config()

    logger.info("Lendo extrato bancario")
    planilha_extrato = ler_primeira_aba(conteudo_extrato)
    extracao_extrato = extrair_extrato(
        planilha_extrato,
        instrucoes=instrucoes_extrato,
        colunas_fixas=_colunas_fixas(config.colunas_fixas_extrato, "extrato"),
    )

    logger.info("Lendo relatorio financeiro")
    planilha_relatorio = ler_primeira_aba(conteudo_relatorio)
    extracao_relatorio = extrair_relatorio(
        planilha_relatorio,
        instrucoes=instrucoes_relatorio,
        colunas_fixas=_colunas_fixas(config.colunas_fixas_relatorio, "relatorio"),
    )

    resultado = conciliar_registros(extracao_extrato.registros, extracao_relatorio.registros, config)
    relatorio = montar_relatorio(resultado, extracao_extrato, extracao_relatorio)

    if gerar_planilha:
        relatorio["planilhaBase64"] = planilha_base64(resultado)

    resumo = relatorio["resumo"]
    logger.info(
        "Taxa de conciliacao: %s (%s)", resumo["taxaConciliacaoFormatada"], resumo["status"]
    )
    return relatorio
