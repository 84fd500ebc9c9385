from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import requests
from lxml import etree

from emissor_ipm.config import IPM_TIMEOUT, GatewaySettings, get_output_dir
from emissor_ipm.services.xml_encoder import serialize_nfse

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    success: bool
    protocol: str | None = None
    invoice_number: str | None = None
    verification_code: str | None = None
    pdf_url: str | None = None
    messages: list[str] = field(default_factory=list)
    raw_response: str | None = None


class IpmClient(Protocol):
    def submit(self, xml: bytes, is_test_mode: bool = True) -> SubmissionResult: ...


def _text(el: etree._Element, tag: str) -> str | None:
    found = el.find(tag)
    if found is None:
        return None
    return "".join(found.itertext()).strip() or None


def parse_response(content: bytes) -> SubmissionResult:
    """Parse the IPM <retorno> document.

    Success is decided by <sucesso>, not by the HTTP status.
    Raises lxml.etree.XMLSyntaxError for a body that is not XML.
    """
    root = etree.fromstring(content)
    success = (_text(root, "sucesso") or "false").lower() == "true"

    messages = []
    mensagem = _text(root, "mensagem")
    if mensagem:
        messages.append(mensagem)
    for el in [*root.iter("erro"), *root.iter("aviso")]:
        code = _text(el, "codigo")
        desc = _text(el, "descricao") or "".join(el.itertext()).strip()
        messages.append(f"[{code}] {desc}")

    numero = _text(root, "numero_nfse")
    return SubmissionResult(
        success=success,
        protocol=numero,
        invoice_number=numero,
        verification_code=_text(root, "cod_verificador_autenticidade"),
        pdf_url=_text(root, "link_pdf"),
        messages=messages,
        raw_response=content.decode("utf-8", errors="replace"),
    )


class FileIpmClient:
    """Write the XML to disk instead of calling IPM. Used to validate payloads."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("FileIpmClient gravando XML em %s", self.output_dir)

    def submit(self, xml: bytes, is_test_mode: bool = True) -> SubmissionResult:
        root = etree.fromstring(xml)
        identifier = root.findtext("identificador") or uuid.uuid4().hex
        ts = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        suffix = "_TEST" if is_test_mode else ""
        path = self.output_dir / f"nfse_{identifier}_{ts}{suffix}.xml"
        path.write_bytes(serialize_nfse(root, pretty=True))
        logger.info("NFS-e XML salvo em %s (teste: %s)", path, is_test_mode)

        return SubmissionResult(
            success=True,
            protocol=f"DUMMY-{identifier[:8]}",
            invoice_number=f"FILE-{identifier[:8].upper()}",
            verification_code=uuid.uuid4().hex[:8].upper(),
            pdf_url=path.as_uri(),
            messages=[
                "XML gravado em arquivo (modo file)",
                f"Arquivo: {path}",
                "Modo teste: NFS-e nao emitida" if is_test_mode else "Simulacao de producao",
            ],
        )


class ApiIpmClient:
    """Submit the XML to the IPM web service as multipart/form-data.

    Cookies set by IPM are kept on the session for later calls. No retries.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: int = IPM_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._auth = (username, password)
        self._session = session or requests.Session()

    def submit(self, xml: bytes, is_test_mode: bool = True) -> SubmissionResult:
        logger.info("Enviando NFS-e para IPM (teste: %s)", is_test_mode)
        resp = self._session.post(
            self.base_url,
            files={"xml": ("invoice.xml", xml, "text/xml")},
            auth=self._auth,
            timeout=self.timeout,
            allow_redirects=False,
        )
        logger.debug("Resposta IPM (HTTP %s): %s", resp.status_code, resp.text)

        try:
            result = parse_response(resp.content)
        except etree.XMLSyntaxError:
            body = resp.text[:500] if resp.text else ""
            raise RuntimeError(f"Erro na API IPM ({resp.status_code}): {body}") from None

        if result.success:
            logger.info(
                "NFS-e emitida: numero %s, verificador %s",
                result.invoice_number,
                result.verification_code,
            )
        else:
            logger.warning("IPM rejeitou a NFS-e: %s", "; ".join(result.messages))
        return result


def get_client(settings: GatewaySettings) -> IpmClient:
    """Select the client for the configured IPM_CLIENT_MODE."""
    if settings.mode == "api":
        return ApiIpmClient(
            settings.api_url or "",
            settings.username or "",
            settings.password or "",
            timeout=settings.timeout,
        )
    return FileIpmClient(get_output_dir())
