from __future__ import annotations

from lxml import etree

XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>'


def serialize_nfse(nfse: etree._Element, pretty: bool = False) -> bytes:
    """Serialize the <nfse> element as UTF-8 bytes with an XML declaration.

    Compact by default; the gateway payload carries no formatting whitespace.
    """
    body = etree.tostring(nfse, encoding="UTF-8", xml_declaration=False, pretty_print=pretty)
    separator = b"\n" if pretty else b""
    return XML_DECLARATION + separator + body
