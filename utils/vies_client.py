"""VAT number verification against the EU VIES registry.

VIES exposes a SOAP 1.1 `checkVat` operation. The envelope is small and fixed,
so it is built by hand, POSTed with `requests` and parsed with ElementTree.

Every failure (transport, HTTP status, SOAP fault, unparseable body) raises
`VatVerificationError`; callers never see `requests` exceptions.
"""

from __future__ import annotations

import abc
from datetime import date
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape

import requests

from api.schemas.companies import CheckVatResult
from logging_utils import get_logger
from settings import SETTINGS

logger = get_logger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
VIES_TYPES_NS = "urn:ec.europa.eu:taxud:vies:services:checkVat:types"

# VIES answers "---" when a member state does not disclose name/address.
_UNDISCLOSED = {"", "---"}

_ENVELOPE = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    f'<soapenv:Envelope xmlns:soapenv="{SOAP_ENV_NS}" xmlns:urn="{VIES_TYPES_NS}">'
    "<soapenv:Header/>"
    "<soapenv:Body>"
    "<urn:checkVat>"
    "<urn:countryCode>{country_code}</urn:countryCode>"
    "<urn:vatNumber>{vat_number}</urn:vatNumber>"
    "</urn:checkVat>"
    "</soapenv:Body>"
    "</soapenv:Envelope>"
)


class VatVerificationError(RuntimeError):
    pass


class VatVerifier(abc.ABC):
    """Checks a VAT number against an external registry."""

    @abc.abstractmethod
    def verify(self, country_code: str, vat_number: str) -> CheckVatResult:
        """Return the registry's answer; raise VatVerificationError on any failure."""


def normalize_vat_query(country_code: str, vat_number: str) -> tuple[str, str]:
    """Upper-case the country, drop whitespace and a repeated country prefix.

    >>> normalize_vat_query(" pl", "PL 123 456")
    ('PL', '123456')
    """

    cc = (country_code or "").strip().upper()
    vat = "".join((vat_number or "").split()).upper()
    if cc and vat.startswith(cc) and len(vat) > len(cc):
        vat = vat[len(cc):]
    return cc, vat


def build_check_vat_envelope(country_code: str, vat_number: str) -> str:
    return _ENVELOPE.format(
        country_code=escape(country_code), vat_number=escape(vat_number)
    )


def _safe_preview(text: str | None, *, limit: int = 500) -> str:
    """Log-safe, truncated preview of a response body."""

    if not text:
        return ""
    return text[:limit].replace("\n", " ")


def _child_text(parent: ET.Element, tag: str) -> str | None:
    el = parent.find(f"{{{VIES_TYPES_NS}}}{tag}")
    if el is None or el.text is None:
        return None
    return el.text.strip()


def _fault_string(root: ET.Element) -> str | None:
    fault = root.find(f".//{{{SOAP_ENV_NS}}}Fault")
    if fault is None:
        return None
    # faultstring is unqualified in SOAP 1.1
    text = fault.findtext("faultstring") or fault.findtext("faultcode")
    return (text or "SOAP fault").strip()


def parse_check_vat_response(body: str | bytes) -> CheckVatResult:
    """Parse a VIES checkVat SOAP response.

    Raises:
        VatVerificationError: on a SOAP fault or a body that is not a checkVatResponse.
    """

    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise VatVerificationError(f"Malformed VIES response: {e}") from e

    fault = _fault_string(root)
    if fault is not None:
        raise VatVerificationError(f"VIES fault: {fault}")

    resp = root.find(f".//{{{VIES_TYPES_NS}}}checkVatResponse")
    if resp is None:
        raise VatVerificationError("VIES response has no checkVatResponse element")

    valid_raw = (_child_text(resp, "valid") or "").lower()
    if valid_raw not in {"true", "false"}:
        raise VatVerificationError(f"VIES response has invalid 'valid' value: {valid_raw!r}")

    request_date = None
    raw_date = _child_text(resp, "requestDate")
    if raw_date:
        # e.g. "2024-01-02+01:00"; the offset is irrelevant for a calendar date.
        try:
            request_date = date.fromisoformat(raw_date[:10])
        except ValueError:
            logger.warning("Unparseable VIES requestDate: %r", raw_date)

    name = _child_text(resp, "name")
    address = _child_text(resp, "address")

    return CheckVatResult(
        country_code=_child_text(resp, "countryCode") or "",
        vat_number=_child_text(resp, "vatNumber") or "",
        request_date=request_date,
        valid=valid_raw == "true",
        name=None if name in _UNDISCLOSED else name,
        address=None if address in _UNDISCLOSED else address,
    )


class ViesVatVerifier(VatVerifier):
    """`VatVerifier` backed by the VIES SOAP service.

    The timeout bounds every call, so an unresponsive registry surfaces as a
    failure instead of a hung request.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        timeout_s: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url or str(SETTINGS["VIES_URL"])
        self.timeout_s = float(
            timeout_s if timeout_s is not None else SETTINGS["VIES_TIMEOUT_S"]  # type: ignore[arg-type]
        )
        self._session = session or requests.Session()

    def verify(self, country_code: str, vat_number: str) -> CheckVatResult:
        cc, vat = normalize_vat_query(country_code, vat_number)
        if not cc or not vat:
            raise VatVerificationError("Country code and VAT number are required")

        envelope = build_check_vat_envelope(cc, vat)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": "",
        }

        try:
            resp = self._session.post(
                self.url,
                data=envelope.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_s,
            )
        except requests.Timeout as e:
            logger.warning("VIES request timed out | cc=%s timeout=%ss", cc, self.timeout_s)
            raise VatVerificationError(
                f"VIES request timed out after {self.timeout_s:g}s"
            ) from e
        except requests.RequestException as e:
            logger.warning("VIES request failed | cc=%s err=%s", cc, e)
            raise VatVerificationError(f"VIES request failed: {e}") from e

        # SOAP faults come back as HTTP 500 with a Fault body; prefer the fault text.
        if not (200 <= resp.status_code < 300):
            fault = None
            try:
                fault = _fault_string(ET.fromstring(resp.content))
            except ET.ParseError:
                pass
            logger.warning(
                "VIES HTTP error | status=%s cc=%s body=%s",
                resp.status_code,
                cc,
                _safe_preview(resp.text),
            )
            if fault is not None:
                raise VatVerificationError(f"VIES fault: {fault}")
            raise VatVerificationError(f"VIES returned HTTP {resp.status_code}")

        result = parse_check_vat_response(resp.content)
        logger.info("VIES checkVat | cc=%s valid=%s", cc, result.valid)
        return result
