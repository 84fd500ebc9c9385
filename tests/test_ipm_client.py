from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from lxml import etree

from emissor_ipm.config import GatewaySettings
from emissor_ipm.services.ipm_client import (
    ApiIpmClient,
    FileIpmClient,
    get_client,
    parse_response,
)

_SUCCESS = (
    "<retorno>"
    "<mensagem><codigo>00001 - Sucesso</codigo></mensagem>"
    "<sucesso>true</sucesso>"
    "<numero_nfse>1234</numero_nfse>"
    "<cod_verificador_autenticidade>ABCD1234</cod_verificador_autenticidade>"
    "<link_pdf>https://ipm.example/nfse/1234.pdf</link_pdf>"
    "</retorno>"
).encode()

_REJECTED = (
    "<retorno>"
    "<sucesso>false</sucesso>"
    "<erro><codigo>E101</codigo><descricao>CNPJ do prestador inválido</descricao></erro>"
    "<aviso><codigo>A7</codigo><descricao>Sem e-mail</descricao></aviso>"
    "</retorno>"
).encode()

_XML = b'<?xml version="1.0" encoding="UTF-8"?><nfse><identificador>0123456789abcdef0123456789abcdef</identificador></nfse>'


def _mock_response(content: bytes = _SUCCESS, status_code: int = 200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    resp.text = content.decode("utf-8", errors="replace")
    return resp


class TestParseResponse:
    def test_success(self):
        result = parse_response(_SUCCESS)
        assert result.success is True
        assert result.invoice_number == "1234"
        assert result.protocol == "1234"
        assert result.verification_code == "ABCD1234"
        assert result.pdf_url == "https://ipm.example/nfse/1234.pdf"
        assert result.messages == ["00001 - Sucesso"]
        assert result.raw_response.startswith("<retorno>")

    def test_rejected(self):
        result = parse_response(_REJECTED)
        assert result.success is False
        assert result.invoice_number is None
        assert result.messages == ["[E101] CNPJ do prestador inválido", "[A7] Sem e-mail"]

    def test_missing_sucesso_is_failure(self):
        assert parse_response(b"<retorno/>").success is False

    def test_not_xml(self):
        with pytest.raises(etree.XMLSyntaxError):
            parse_response(b"<html>erro")


class TestApiIpmClient:
    def test_success(self):
        session = MagicMock()
        session.post.return_value = _mock_response()
        client = ApiIpmClient("https://ipm.example/ws", "user", "secret", session=session)
        result = client.submit(_XML)
        assert result.success is True
        assert result.invoice_number == "1234"

    def test_request_payload(self):
        session = MagicMock()
        session.post.return_value = _mock_response()
        client = ApiIpmClient("https://ipm.example/ws", "user", "secret", timeout=5, session=session)
        client.submit(_XML, is_test_mode=True)
        url = session.post.call_args[0][0]
        _, kwargs = session.post.call_args
        assert url == "https://ipm.example/ws"
        assert kwargs["files"] == {"xml": ("invoice.xml", _XML, "text/xml")}
        assert kwargs["auth"] == ("user", "secret")
        assert kwargs["timeout"] == 5
        assert kwargs["allow_redirects"] is False

    def test_rejection_returned(self):
        session = MagicMock()
        session.post.return_value = _mock_response(_REJECTED)
        result = ApiIpmClient("https://ipm.example/ws", "u", "p", session=session).submit(_XML)
        assert result.success is False
        assert "[E101] CNPJ do prestador inválido" in result.messages

    def test_non_xml_body_raises(self):
        session = MagicMock()
        session.post.return_value = _mock_response(b"Internal Server Error", status_code=500)
        client = ApiIpmClient("https://ipm.example/ws", "u", "p", session=session)
        with pytest.raises(RuntimeError, match=r"Erro na API IPM.*500"):
            client.submit(_XML)

    def test_truncates_body(self):
        session = MagicMock()
        session.post.return_value = _mock_response(b"x" * 1000, status_code=502)
        client = ApiIpmClient("https://ipm.example/ws", "u", "p", session=session)
        with pytest.raises(RuntimeError) as exc_info:
            client.submit(_XML)
        assert "x" * 500 in str(exc_info.value)
        assert "x" * 501 not in str(exc_info.value)

    def test_reuses_session(self):
        session = MagicMock()
        session.post.return_value = _mock_response()
        client = ApiIpmClient("https://ipm.example/ws", "u", "p", session=session)
        client.submit(_XML)
        client.submit(_XML)
        assert session.post.call_count == 2


class TestFileIpmClient:
    def test_writes_file(self, tmp_path):
        client = FileIpmClient(tmp_path / "out")
        result = client.submit(_XML, is_test_mode=True)

        files = list((tmp_path / "out").glob("*.xml"))
        assert len(files) == 1
        name = files[0].name
        assert name.startswith("nfse_0123456789abcdef0123456789abcdef_")
        assert name.endswith("_TEST.xml")
        assert result.success is True
        assert result.protocol == "DUMMY-01234567"
        assert result.invoice_number == "FILE-01234567"
        assert result.pdf_url == files[0].as_uri()
        assert len(result.messages) == 3

    def test_production_suffix(self, tmp_path):
        FileIpmClient(tmp_path).submit(_XML, is_test_mode=False)
        (written,) = tmp_path.glob("*.xml")
        assert not written.name.endswith("_TEST.xml")

    def test_file_is_pretty_printed(self, tmp_path):
        FileIpmClient(tmp_path).submit(_XML)
        (written,) = tmp_path.glob("*.xml")
        content = written.read_bytes()
        assert content.startswith(b'<?xml version="1.0" encoding="UTF-8"?>\n<nfse>\n')


class TestGetClient:
    def test_file_mode(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IPM_OUTPUT_DIR", str(tmp_path))
        client = get_client(GatewaySettings(mode="file"))
        assert isinstance(client, FileIpmClient)
        assert client.output_dir == tmp_path

    @patch("emissor_ipm.services.ipm_client.requests.Session")
    def test_api_mode(self, mock_session):
        settings = GatewaySettings(
            mode="api", api_url="https://ipm.example/ws", username="u", password="p", timeout=7
        )
        client = get_client(settings)
        assert isinstance(client, ApiIpmClient)
        assert client.base_url == "https://ipm.example/ws"
        assert client.timeout == 7
