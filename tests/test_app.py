import io
import json

import pytest

from app import app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("PIN_AUTH", "4321")
    app.config["TESTING"] = True
    app.config["CONCILIACAO_CONFIG"] = str(tmp_path / "config.json")
    (tmp_path / "config.json").write_text(
        json.dumps({"pasta_modelos": str(tmp_path / "modelos")}), encoding="utf-8"
    )
    with app.test_client() as client:
        yield client


@pytest.fixture
def logado(client):
    with client.session_transaction() as sess:
        sess["autenticado"] = True
    return client


def _upload(client, arquivos, **campos):
    data = dict(campos)
    for campo, (conteudo, nome) in arquivos.items():
        data[campo] = (io.BytesIO(conteudo), nome)
    return client.post("/api/conciliacao/processar", data=data, content_type="multipart/form-data")


def test_index_redireciona_para_login(client):
    resp = client.get("/")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")


def test_pagina_de_login(client):
    assert client.get("/login").status_code == 200


@pytest.mark.parametrize("corpo", [{}, {"pin": ""}, {"pin": 1234}, {"pin": "12a4"}, {"pin": "12345"}])
def test_login_pin_malformado(client, corpo):
    resp = client.post("/auth/login", json=corpo)
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_login_sem_pin_configurado(client, monkeypatch):
    monkeypatch.delenv("PIN_AUTH")
    assert client.post("/auth/login", json={"pin": "4321"}).status_code == 500


def test_login_pin_incorreto(client):
    resp = client.post("/auth/login", json={"pin": "0000"})
    assert resp.status_code == 401
    with client.session_transaction() as sess:
        assert not sess.get("autenticado")


def test_login_e_logout(client):
    resp = client.post("/auth/login", json={"pin": "4321"})
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True
    assert client.get("/conciliacao").status_code == 200

    client.get("/logout")
    assert client.get("/conciliacao").status_code == 302


def test_conciliacao_exige_login(client):
    assert client.get("/conciliacao").status_code == 302
    assert client.post("/api/conciliacao/processar").status_code == 401


def test_processar(logado, bytes_extrato, bytes_relatorio):
    resp = _upload(logado, {
        "extrato_bancario": (bytes_extrato, "extrato.xlsx"),
        "relatorio_financeiro": (bytes_relatorio, "relatorio.xlsx"),
    })
    assert resp.status_code == 200

    dados = resp.get_json()
    assert dados["success"] is True
    assert dados["tipo"] == "conciliacao"
    assert dados["relatorio"]["resumo"]["totalEncontrados"] == 4
    assert dados["relatorio"]["resumo"]["taxaConciliacao"] == 80.0
    assert dados["relatorio"]["planilhaBase64"]
    assert "80.00%" in dados["mensagem"]


def test_processar_com_instrucoes_do_formulario(logado, bytes_extrato, bytes_relatorio):
    instrucoes = {"sheets": [{"columns": [{"name": "Data", "type": "data_texto", "examples": ["05/01/2024"]}]}]}
    resp = _upload(logado, {
        "extrato_bancario": (bytes_extrato, "extrato.xlsx"),
        "relatorio_financeiro": (bytes_relatorio, "relatorio.xlsx"),
    }, instrucoes_extrato=json.dumps(instrucoes))

    assert resp.status_code == 200
    colunas = resp.get_json()["relatorio"]["planilhas"]["extrato"]["colunas"]
    assert colunas["fonte"]["data"] == "instrucoes"


def test_processar_usa_instrucoes_salvas(logado, tmp_path, bytes_extrato, bytes_relatorio):
    pasta = tmp_path / "modelos"
    pasta.mkdir()
    instrucoes = {"sheets": [{"columns": [{"name": "Data", "type": "data_texto", "examples": ["05/01/2024"]}]}]}
    (pasta / "instrucoes-extrato.json").write_text(json.dumps(instrucoes), encoding="utf-8")

    resp = _upload(logado, {
        "extrato_bancario": (bytes_extrato, "extrato.xlsx"),
        "relatorio_financeiro": (bytes_relatorio, "relatorio.xlsx"),
    })
    colunas = resp.get_json()["relatorio"]["planilhas"]["extrato"]["colunas"]
    assert colunas["fonte"]["data"] == "instrucoes"


def test_processar_instrucoes_invalidas(logado, bytes_extrato, bytes_relatorio):
    resp = _upload(logado, {
        "extrato_bancario": (bytes_extrato, "extrato.xlsx"),
        "relatorio_financeiro": (bytes_relatorio, "relatorio.xlsx"),
    }, instrucoes_relatorio="{nao e json")
    assert resp.status_code == 400


def test_processar_sem_arquivo(logado, bytes_extrato):
    resp = _upload(logado, {"extrato_bancario": (bytes_extrato, "extrato.xlsx")})
    assert resp.status_code == 400
    assert "Relatorio Financeiro" in resp.get_json()["error"]


def test_processar_extensao_invalida(logado, bytes_extrato):
    resp = _upload(logado, {
        "extrato_bancario": (bytes_extrato, "extrato.xlsx"),
        "relatorio_financeiro": (b"a;b;c", "relatorio.csv"),
    })
    assert resp.status_code == 400


def test_processar_planilha_corrompida(logado, bytes_relatorio):
    resp = _upload(logado, {
        "extrato_bancario": (b"nao e xlsx", "extrato.xlsx"),
        "relatorio_financeiro": (bytes_relatorio, "relatorio.xlsx"),
    })
    assert resp.status_code == 422
    assert resp.get_json()["success"] is False
