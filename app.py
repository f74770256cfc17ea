#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
CONCILIACAO BANCARIA - BACKEND WEB
Extrato bancario x Relatorio financeiro, com acesso por PIN
"""

from flask import Flask, render_template, request, jsonify, redirect, url_for, session
from functools import wraps
import hmac
import json
import logging
import os
import re
from werkzeug.utils import secure_filename

from config import carregar_config, CONFIG_FILE
from conciliador import realizar_conciliacao
from detector_modelo import carregar_instrucoes
from modelos import ConfiguracaoInvalidaError, PlanilhaInvalidaError

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = int(os.environ.get('MAX_UPLOAD_MB', '50')) * 1024 * 1024
app.config['CONCILIACAO_CONFIG'] = os.environ.get('CONCILIACAO_CONFIG', CONFIG_FILE)
app.secret_key = os.environ.get('SECRET_KEY', 'conciliacao-bancaria-dev-secret-key')

EXTENSOES_PERMITIDAS = ('.xlsx', '.xlsm')
_RE_PIN = re.compile(r'^\d{4}$')

# ==================================================================================
# DECORADORES DE AUTENTICACAO
# ==================================================================================

def login_required(f):
    """Decorator para rotas que requerem login"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('autenticado'):
            return redirect(url_for('login'))
        return f(*args, **kwargs)
    return decorated_function

def api_login_required(f):
    """Mesma verificacao, respondendo 401 em JSON (chamadas via fetch)"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('autenticado'):
            return jsonify({'success': False, 'error': 'Sessao expirada. Faca login novamente.'}), 401
        return f(*args, **kwargs)
    return decorated_function

# ==================================================================================
# ROTAS DE AUTENTICACAO
# ==================================================================================

@app.route('/')
def index():
    if session.get('autenticado'):
        return redirect(url_for('conciliacao'))
    return redirect(url_for('login'))

@app.route('/login')
def login():
    if session.get('autenticado'):
        return redirect(url_for('conciliacao'))
    return render_template('login.html')

@app.route('/auth/login', methods=['POST'])
def auth_login():
    data = request.get_json(silent=True) or {}
    pin = data.get('pin')

    if not pin or not isinstance(pin, str):
        logger.info("[AUTH] Tentativa de login sem PIN")
        return jsonify({'success': False, 'error': 'PIN nao fornecido'}), 400

    if not _RE_PIN.match(pin):
        logger.info("[AUTH] PIN com formato invalido")
        return jsonify({'success': False, 'error': 'PIN deve conter exatamente 4 digitos'}), 400

    pin_correto = os.environ.get('PIN_AUTH')
    if not pin_correto:
        logger.error("[AUTH] Variavel PIN_AUTH nao configurada")
        return jsonify({'success': False, 'error': 'Erro de configuracao do servidor'}), 500

    if not hmac.compare_digest(pin.encode(), pin_correto.encode()):
        logger.warning("[AUTH] Tentativa de login com PIN incorreto")
        return jsonify({'success': False, 'error': 'PIN incorreto. Tente novamente.'}), 401

    session['autenticado'] = True
    logger.info("[AUTH] Login bem-sucedido")
    return jsonify({'success': True, 'redirect': url_for('conciliacao')})

@app.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('login'))

# ==================================================================================
# ROTAS DE CONCILIACAO (Extrato Bancario x Relatorio Financeiro)
# ==================================================================================

@app.route('/conciliacao')
@login_required
def conciliacao():
    return render_template('conciliacao.html')


def _ler_upload(campo, rotulo):
    """Bytes do arquivo enviado; ValueError com mensagem para o usuario."""
    if campo not in request.files:
        raise ValueError(f'Envie o arquivo de {rotulo}')

    arquivo = request.files[campo]
    if arquivo.filename == '':
        raise ValueError(f'Selecione o arquivo de {rotulo}')

    filename = secure_filename(arquivo.filename)
    if not filename.lower().endswith(EXTENSOES_PERMITIDAS):
        raise ValueError(f'{rotulo}: apenas arquivos .xlsx sao permitidos')

    conteudo = arquivo.read()
    if not conteudo:
        raise ValueError(f'{rotulo}: arquivo vazio')

    logger.info("[PROCESSAR] %s: %s (%d bytes)", rotulo, filename, len(conteudo))
    return filename, conteudo


def _ler_instrucoes(campo, filename, pasta_modelos):
    """Instrucoes do formulario (JSON) ou salvas em instrucoes-<arquivo>.json."""
    texto = request.form.get(campo, '').strip()
    if texto:
        try:
            instrucoes = json.loads(texto)
        except json.JSONDecodeError as e:
            raise ValueError(f"'{campo}' nao e um JSON valido: {e}")
        if not isinstance(instrucoes, dict):
            raise ValueError(f"'{campo}' deve ser um objeto JSON")
        return instrucoes
    return carregar_instrucoes(pasta_modelos, filename)


@app.route('/api/conciliacao/processar', methods=['POST'])
@api_login_required
def api_conciliacao_processar():
    """Processa a conciliacao das duas planilhas enviadas"""
    try:
        config = carregar_config(app.config['CONCILIACAO_CONFIG'])

        nome_extrato, conteudo_extrato = _ler_upload('extrato_bancario', 'Extrato Bancario')
        nome_relatorio, conteudo_relatorio = _ler_upload('relatorio_financeiro', 'Relatorio Financeiro')

        instrucoes_extrato = _ler_instrucoes('instrucoes_extrato', nome_extrato, config.pasta_modelos)
        instrucoes_relatorio = _ler_instrucoes('instrucoes_relatorio', nome_relatorio, config.pasta_modelos)

        relatorio = realizar_conciliacao(
            conteudo_extrato,
            conteudo_relatorio,
            instrucoes_extrato=instrucoes_extrato,
            instrucoes_relatorio=instrucoes_relatorio,
            config=config,
        )

        resumo = relatorio['resumo']
        return jsonify({
            'success': True,
            'tipo': 'conciliacao',
            'mensagem': (
                f"Conciliacao concluida: {resumo['totalEncontrados']} de {resumo['totalRelatorio']} "
                f"pagamentos do relatorio encontrados no extrato ({resumo['taxaConciliacaoFormatada']})"
            ),
            'relatorio': relatorio,
        })

    except PlanilhaInvalidaError as e:
        logger.warning("[PROCESSAR] Planilha invalida: %s", e)
        return jsonify({'success': False, 'error': str(e)}), 422
    except ConfiguracaoInvalidaError as e:
        logger.error("[PROCESSAR] %s", e)
        return jsonify({'success': False, 'error': str(e)}), 500
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        logger.exception("[PROCESSAR] Erro inesperado")
        return jsonify({'success': False, 'error': f'Erro ao processar conciliacao: {e}'}), 500


@app.errorhandler(413)
def arquivo_muito_grande(e):
    limite = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
    return jsonify({'success': False, 'error': f'Arquivo maior que o limite de {limite}MB'}), 413


if __name__ == '__main__':
    app.run(debug=True, port=5001, use_reloader=False)
