from __future__ import annotations

from datetime import date

import pytest
import requests

from utils.vies_client import (
    VatVerificationError,
    ViesVatVerifier,
    build_check_vat_envelope,
    normalize_vat_query,
    parse_check_vat_response,
)

VALID_RESPONSE = """<?xml version="1.0" encoding="UTF-8"?>
<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
  <env:Header/>
  <env:Body>
    <ns2:checkVatResponse xmlns:ns2="urn:ec.europa.eu:taxud:vies:services:checkVat:types">
      <ns2:countryCode>PL</ns2:countryCode>
      <ns2:vatNumber>5260250274</ns2:vatNumber>
      <ns2:requestDate>2024-03-05+01:00</ns2:requestDate>
      <ns2:valid>true</ns2:valid>
      <ns2:name>MINISTERSTWO FINANSÓW</ns2:name>
      <ns2:address>UL. ŚWIĘTOKRZYSKA 12
00-916 WARSZAWA</ns2:address>
    </ns2:checkVatResponse>
  </env:Body>
</env:Envelope>"""

INVALID_RESPONSE = """<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
  <env:Body>
    <ns2:checkVatResponse xmlns:ns2="urn:ec.europa.eu:taxud:vies:services:checkVat:types">
      <ns2:countryCode>DE</ns2:countryCode>
      <ns2:vatNumber>000</ns2:vatNumber>
      <ns2:requestDate>2024-03-05+01:00</ns2:requestDate>
      <ns2:valid>false</ns2:valid>
      <ns2:name>---</ns2:name>
      <ns2:address>---</ns2:address>
    </ns2:checkVatResponse>
  </env:Body>
</env:Envelope>"""

FAULT_RESPONSE = """<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
  <env:Body>
    <env:Fault>
      <faultcode>env:Server</faultcode>
      <faultstring>MS_UNAVAILABLE</faultstring>
    </env:Fault>
  </env:Body>
</env:Envelope>"""


class _FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text
        self.content = text.encode("utf-8")


class _FakeSession:
    def __init__(self, response=None, exc: Exception | None = None) -> None:
        self.response = response
        self.exc = exc
        self.requests: list[dict] = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def test_normalize_vat_query():
    assert normalize_vat_query(" pl", "526 025 02 74") == ("PL", "5260250274")
    assert normalize_vat_query("PL", "PL5260250274") == ("PL", "5260250274")
    assert normalize_vat_query("de", "de123") == ("DE", "123")
    # A bare prefix is kept rather than emptied.
    assert normalize_vat_query("PL", "PL") == ("PL", "PL")


def test_envelope_escapes_values():
    env = build_check_vat_envelope("PL", "1<2&3")
    assert "<urn:vatNumber>1&lt;2&amp;3</urn:vatNumber>" in env
    assert "<urn:countryCode>PL</urn:countryCode>" in env


def test_parse_valid_response():
    result = parse_check_vat_response(VALID_RESPONSE.encode("utf-8"))
    assert result.valid is True
    assert result.country_code == "PL"
    assert result.vat_number == "5260250274"
    assert result.request_date == date(2024, 3, 5)
    assert result.name == "MINISTERSTWO FINANSÓW"
    assert result.address.startswith("UL. ŚWIĘTOKRZYSKA 12")


def test_parse_invalid_response_normalizes_undisclosed_fields():
    result = parse_check_vat_response(INVALID_RESPONSE)
    assert result.valid is False
    assert result.name is None
    assert result.address is None


def test_parse_fault_raises():
    with pytest.raises(VatVerificationError, match="MS_UNAVAILABLE"):
        parse_check_vat_response(FAULT_RESPONSE)


@pytest.mark.parametrize("body", ["not xml", "<a><b/></a>"])
def test_parse_garbage_raises(body):
    with pytest.raises(VatVerificationError):
        parse_check_vat_response(body)


def test_verify_posts_soap_request_with_timeout():
    session = _FakeSession(_FakeResponse(200, VALID_RESPONSE))
    verifier = ViesVatVerifier(url="https://vies.test/checkVat", timeout_s=3.5, session=session)

    result = verifier.verify("pl", "PL 5260250274")

    assert result.valid is True
    (req,) = session.requests
    assert req["url"] == "https://vies.test/checkVat"
    assert req["timeout"] == 3.5
    assert req["headers"]["Content-Type"].startswith("text/xml")
    assert b"<urn:vatNumber>5260250274</urn:vatNumber>" in req["data"]


def test_verify_http_fault_uses_fault_string():
    session = _FakeSession(_FakeResponse(500, FAULT_RESPONSE))
    verifier = ViesVatVerifier(url="https://vies.test", session=session)
    with pytest.raises(VatVerificationError, match="VIES fault: MS_UNAVAILABLE"):
        verifier.verify("PL", "1")


def test_verify_http_error_without_fault():
    session = _FakeSession(_FakeResponse(502, "<html>Bad gateway</html>"))
    verifier = ViesVatVerifier(url="https://vies.test", session=session)
    with pytest.raises(VatVerificationError, match="HTTP 502"):
        verifier.verify("PL", "1")


def test_verify_timeout():
    session = _FakeSession(exc=requests.Timeout("read timed out"))
    verifier = ViesVatVerifier(url="https://vies.test", timeout_s=2, session=session)
    with pytest.raises(VatVerificationError, match="timed out after 2s"):
        verifier.verify("PL", "1")


def test_verify_connection_error():
    session = _FakeSession(exc=requests.ConnectionError("connection refused"))
    verifier = ViesVatVerifier(url="https://vies.test", session=session)
    with pytest.raises(VatVerificationError, match="connection refused"):
        verifier.verify("PL", "1")


def test_verify_requires_inputs():
    session = _FakeSession(_FakeResponse(200, VALID_RESPONSE))
    verifier = ViesVatVerifier(url="https://vies.test", session=session)
    with pytest.raises(VatVerificationError):
        verifier.verify("", "123")
    assert session.requests == []
