# Overview: Client for the fiscal authority web services (WSAA login tickets, WSFE electronic invoicing).

from __future__ import annotations

import base64
import logging
import subprocess
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from ..errors import AuthorityRejected, AuthorityUnreachable
from ..time_utils import format_fiscal_date, parse_fiscal_date, parse_iso_datetime, utcnow
from .pricing_service import format_amount
"""
Wire contract (authoritative)

- Authentication: a login ticket request (TRA) is signed as CMS and sent to
  WSAA loginCms; the answer carries token, sign and the ticket expiration.
- Business calls (WSFE) carry Auth{Token, Sign, Cuit}.
- Dates are YYYYMMDD. Amounts always have exactly two decimals.
- Currency is the local one (PES) with exchange rate 1.
- A SOAP fault or an explicit rejection is AuthorityRejected (final for that
  payload); transport errors, timeouts and 5xx without a fault are
  AuthorityUnreachable.
"""


logger = logging.getLogger(__name__)

ENDPOINTS = {
    "production": {
        "wsaa": "https://wsaa.afip.gov.ar/ws/services/LoginCms",
        "wsfe": "https://servicios1.afip.gov.ar/wsfev1/service.asmx",
    },
    "homologation": {
        "wsaa": "https://wsaahomo.afip.gov.ar/ws/services/LoginCms",
        "wsfe": "https://wswhomo.afip.gov.ar/wsfev1/service.asmx",
    },
}

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSAA_NS = "http://wsaa.view.sua.dvadac.desein.afip.gov"
WSFE_NS = "http://ar.gov.afip.dif.FEV1/"

ET.register_namespace("soapenv", SOAP_ENV_NS)
ET.register_namespace("wsaa", WSAA_NS)
ET.register_namespace("ar", WSFE_NS)

CONCEPT_PRODUCTS = 1
EXCHANGE_RATE = "1"

TICKET_LIFETIME = timedelta(hours=24)
CLOCK_SKEW = timedelta(minutes=5)

# WSFE "ValidacionDeToken": the ticket was not accepted.
TICKET_ERROR_CODES = {"600"}

# VAT aliquot ids by rate (basis points)
VAT_ALIQUOT_IDS = {
    0: 3,
    250: 9,
    500: 8,
    1050: 4,
    2100: 5,
    2700: 6,
}


@dataclass(frozen=True)
class AuthorizationTicket:
    token: str
    sign: str
    valid_until: datetime  # UTC-naive

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) < self.valid_until


@dataclass(frozen=True)
class AssociatedVoucher:
    """Original voucher referenced by a credit note."""
    voucher_type: int
    point_of_sale: int
    voucher_number: int


@dataclass(frozen=True)
class AuthorizationRequest:
    point_of_sale: int
    voucher_type: int
    voucher_number: int
    issue_date: date
    buyer_document_type: int
    buyer_document_number: str
    net_cents: int
    tax_cents: int
    total_cents: int
    tax_rate_bps: int
    concept: int = CONCEPT_PRODUCTS
    associated_vouchers: tuple[AssociatedVoucher, ...] = ()


@dataclass(frozen=True)
class AuthorizationResult:
    authorization_code: str
    authorization_expires_on: date
    voucher_number: int
    observations: tuple[dict, ...] = ()
    raw: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "authorization_code": self.authorization_code,
            "authorization_expires_on": self.authorization_expires_on.isoformat(),
            "voucher_number": self.voucher_number,
            "observations": list(self.observations),
            "raw": self.raw,
        }


class OpenSSLCmsSigner:
    """
    Sign the login ticket request with the registered certificate.

    Produces the base64 DER CMS (PKCS#7 SignedData, content attached) that
    WSAA expects, by invoking the openssl command line tool.
    """

    def __init__(self, cert_path: str, key_path: str, openssl_binary: str = "openssl"):
        self.cert_path = cert_path
        self.key_path = key_path
        self.openssl_binary = openssl_binary

    def __call__(self, data: bytes) -> str:
        cmd = [
            self.openssl_binary, "cms", "-sign",
            "-signer", self.cert_path,
            "-inkey", self.key_path,
            "-nodetach", "-binary",
            "-outform", "DER",
        ]
        try:
            proc = subprocess.run(cmd, input=data, capture_output=True, check=False)
        except OSError as exc:
            raise AuthorityRejected(
                "Could not run openssl to sign the login ticket request",
                code="signing_failed",
            ) from exc
        if proc.returncode != 0:
            raise AuthorityRejected(
                f"Login ticket request signing failed: {proc.stderr.decode(errors='replace').strip()}",
                code="signing_failed",
            )
        return base64.b64encode(proc.stdout).decode("ascii")


def _iso(dt: datetime) -> str:
    return dt.replace(tzinfo=timezone.utc).isoformat(timespec="seconds")


def build_login_ticket_request(service: str, now: datetime) -> bytes:
    generated = now - CLOCK_SKEW
    root = ET.Element("loginTicketRequest", version="1.0")
    header = ET.SubElement(root, "header")
    ET.SubElement(header, "uniqueId").text = str(int(now.replace(tzinfo=timezone.utc).timestamp()))
    ET.SubElement(header, "generationTime").text = _iso(generated)
    ET.SubElement(header, "expirationTime").text = _iso(generated + TICKET_LIFETIME)
    ET.SubElement(root, "service").text = service
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def parse_login_ticket_response(text: str) -> AuthorizationTicket:
    try:
        root = ET.fromstring(text.strip().encode("utf-8"))
    except ET.ParseError as exc:
        raise AuthorityRejected("Login ticket response is not valid XML") from exc

    token = root.findtext("credentials/token")
    sign = root.findtext("credentials/sign")
    expiration = root.findtext("header/expirationTime")
    if not token or not sign or not expiration:
        raise AuthorityRejected("Login ticket response is missing credentials")
    try:
        valid_until = parse_iso_datetime(expiration)
    except ValueError as exc:
        raise AuthorityRejected(f"Invalid ticket expiration: {expiration!r}") from exc
    return AuthorizationTicket(token=token.strip(), sign=sign.strip(), valid_until=valid_until)


def _append(parent, ns: str, name: str, value):
    child = ET.SubElement(parent, f"{{{ns}}}{name}")
    if isinstance(value, list):
        for key, sub in value:
            _append(child, ns, key, sub)
    elif value is not None:
        child.text = str(value)
    return child


def soap_envelope(ns: str, operation: str, fields: list) -> bytes:
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    _append(body, ns, operation, fields)
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def _strip_namespaces(root):
    for el in root.iter():
        if isinstance(el.tag, str) and "}" in el.tag:
            el.tag = el.tag.split("}", 1)[1]
    return root


def _collect_messages(parent, path: str) -> list[dict]:
    if parent is None:
        return []
    return [
        {"code": (el.findtext("Code") or "").strip(), "message": (el.findtext("Msg") or "").strip()}
        for el in parent.findall(path)
    ]


def _describe(messages: list[dict]) -> str:
    return "; ".join(f"{m['code']}: {m['message']}" for m in messages)


def build_authorization_detail(request: AuthorizationRequest, currency_code: str) -> list:
    if request.total_cents != request.net_cents + request.tax_cents:
        raise ValueError("total must equal net + tax")
    if request.tax_rate_bps not in VAT_ALIQUOT_IDS:
        raise ValueError(f"unsupported VAT rate: {request.tax_rate_bps} bps")

    detail = [
        ("Concepto", request.concept),
        ("DocTipo", request.buyer_document_type),
        ("DocNro", request.buyer_document_number),
        ("CbteDesde", request.voucher_number),
        ("CbteHasta", request.voucher_number),
        ("CbteFch", format_fiscal_date(request.issue_date)),
        ("ImpTotal", format_amount(request.total_cents)),
        ("ImpTotConc", format_amount(0)),
        ("ImpNeto", format_amount(request.net_cents)),
        ("ImpOpEx", format_amount(0)),
        ("ImpTrib", format_amount(0)),
        ("ImpIVA", format_amount(request.tax_cents)),
        ("MonId", currency_code),
        ("MonCotiz", EXCHANGE_RATE),
    ]
    if request.associated_vouchers:
        detail.append(("CbtesAsoc", [
            ("CbteAsoc", [
                ("Tipo", assoc.voucher_type),
                ("PtoVta", assoc.point_of_sale),
                ("Nro", assoc.voucher_number),
            ])
            for assoc in request.associated_vouchers
        ]))
    detail.append(("Iva", [
        ("AlicIva", [
            ("Id", VAT_ALIQUOT_IDS[request.tax_rate_bps]),
            ("BaseImp", format_amount(request.net_cents)),
            ("Importe", format_amount(request.tax_cents)),
        ]),
    ]))
    return [
        ("FeCAEReq", [
            ("FeCabReq", [
                ("CantReg", 1),
                ("PtoVta", request.point_of_sale),
                ("CbteTipo", request.voucher_type),
            ]),
            ("FeDetReq", [("FECAEDetRequest", detail)]),
        ]),
    ]


class FiscalAuthorityClient:
    """
    Stateful client for one taxpayer (CUIT).

    The authentication ticket is cached on the instance and reused until it
    expires. Concurrent callers may both refresh a stale ticket; that is
    harmless for the authority, so no lock guards it.
    """

    def __init__(
        self,
        *,
        cuit: str,
        environment: str = "homologation",
        signer: Optional[Callable[[bytes], str]] = None,
        service: str = "wsfe",
        currency_code: str = "PES",
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if environment not in ENDPOINTS:
            raise ValueError(f"unknown fiscal environment: {environment!r}")
        self.cuit = cuit
        self.environment = environment
        self.service = service
        self.currency_code = currency_code
        self._endpoints = ENDPOINTS[environment]
        self._signer = signer
        self._http = http_client or httpx.Client(timeout=timeout)
        self._clock = clock
        self._ticket: Optional[AuthorizationTicket] = None

    @property
    def ticket(self) -> Optional[AuthorizationTicket]:
        return self._ticket

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def ensure_ticket(self) -> AuthorizationTicket:
        ticket = self._ticket
        if ticket is not None and ticket.is_valid(self._clock()):
            return ticket

        ticket = self._request_ticket()
        self._ticket = ticket
        logger.info("Obtained fiscal login ticket valid until %s", ticket.valid_until.isoformat())
        return ticket

    def invalidate_ticket(self) -> None:
        self._ticket = None

    def _request_ticket(self) -> AuthorizationTicket:
        if self._signer is None:
            raise AuthorityRejected(
                "No login ticket signer configured (set FISCAL_CERT_PATH and FISCAL_KEY_PATH)",
                code="signer_not_configured",
            )
        tra = build_login_ticket_request(self.service, self._clock())
        cms = self._signer(tra)
        envelope = soap_envelope(WSAA_NS, "loginCms", [("in0", cms)])
        body = self._post(self._endpoints["wsaa"], envelope, soap_action="")
        ticket_xml = body.findtext("loginCmsResponse/loginCmsReturn")
        if not ticket_xml:
            raise AuthorityRejected("Login response carries no ticket")
        return parse_login_ticket_response(ticket_xml)

    # ------------------------------------------------------------------
    # Business operations
    # ------------------------------------------------------------------

    def get_last_voucher_number(self, point_of_sale: int, voucher_type: int) -> int:
        result, errors = self._call_wsfe(
            "FECompUltimoAutorizado",
            [("PtoVta", point_of_sale), ("CbteTipo", voucher_type)],
        )
        if errors:
            raise AuthorityRejected(
                _describe(errors),
                {"point_of_sale": point_of_sale, "voucher_type": voucher_type, "errors": errors},
                code=errors[0]["code"],
            )
        raw_number = result.findtext("CbteNro")
        try:
            number = int((raw_number or "").strip())
        except ValueError as exc:
            raise AuthorityRejected(f"Invalid last voucher number: {raw_number!r}") from exc
        if number < 0:
            raise AuthorityRejected(f"Invalid last voucher number: {number}")
        return number

    def request_authorization(self, request: AuthorizationRequest) -> AuthorizationResult:
        result, errors = self._call_wsfe(
            "FECAESolicitar",
            build_authorization_detail(request, self.currency_code),
        )

        header = result.find("FeCabResp")
        detail = result.find("FeDetResp/FECAEDetResponse")
        observations = _collect_messages(detail, "Observaciones/Obs")
        outcome = None
        if detail is not None:
            outcome = detail.findtext("Resultado")
        if not outcome and header is not None:
            outcome = header.findtext("Resultado")

        raw = {
            "result": outcome,
            "point_of_sale": request.point_of_sale,
            "voucher_type": request.voucher_type,
            "requested_voucher_number": request.voucher_number,
            "errors": errors,
            "observations": observations,
        }

        if outcome != "A":
            reasons = errors + observations
            raise AuthorityRejected(
                _describe(reasons) or f"Authorization refused (result={outcome})",
                raw,
                code=reasons[0]["code"] if reasons else "rejected",
            )

        code = (detail.findtext("CAE") or "").strip()
        try:
            expires_on = parse_fiscal_date(detail.findtext("CAEFchVto"))
            voucher_number = int((detail.findtext("CbteDesde") or "").strip())
        except ValueError as exc:
            raise AuthorityRejected("Malformed authorization response", raw) from exc
        if not code or expires_on is None:
            raise AuthorityRejected("Authorization response carries no code", raw)

        raw.update({
            "authorization_code": code,
            "authorization_expires_on": expires_on.isoformat(),
            "voucher_number": voucher_number,
        })
        logger.info(
            "Authorized voucher type=%s pos=%s number=%s code=%s",
            request.voucher_type, request.point_of_sale, voucher_number, code,
        )
        return AuthorizationResult(
            authorization_code=code,
            authorization_expires_on=expires_on,
            voucher_number=voucher_number,
            observations=tuple(observations),
            raw=raw,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _call_wsfe(self, operation: str, fields: list):
        """
        Invoke a WSFE operation; returns (result element, error list).

        A rejected ticket is refreshed and the call retried exactly once.
        """
        refreshed = False
        while True:
            ticket = self.ensure_ticket()
            auth = ("Auth", [("Token", ticket.token), ("Sign", ticket.sign), ("Cuit", self.cuit)])
            envelope = soap_envelope(WSFE_NS, operation, [auth, *fields])
            body = self._post(self._endpoints["wsfe"], envelope, soap_action=WSFE_NS + operation)

            result = body.find(f"{operation}Response/{operation}Result")
            if result is None:
                raise AuthorityRejected(f"{operation}: response carries no result")

            errors = _collect_messages(result, "Errors/Err")
            if not refreshed and any(err["code"] in TICKET_ERROR_CODES for err in errors):
                logger.warning("Fiscal login ticket rejected (%s); refreshing once", _describe(errors))
                self.invalidate_ticket()
                refreshed = True
                continue
            return result, errors

    def _post(self, url: str, envelope: bytes, *, soap_action: str):
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{soap_action}"',
        }
        try:
            response = self._http.post(url, content=envelope, headers=headers)
        except httpx.TimeoutException as exc:
            raise AuthorityUnreachable(f"Timed out contacting {url}", {"url": url}) from exc
        except httpx.TransportError as exc:
            raise AuthorityUnreachable(f"Could not reach {url}: {exc}", {"url": url}) from exc

        status = response.status_code
        try:
            root = _strip_namespaces(ET.fromstring(response.content))
        except ET.ParseError:
            if status >= 500 or not response.content:
                raise AuthorityUnreachable(f"{url} answered HTTP {status}", {"url": url, "status": status})
            raise AuthorityRejected(
                f"{url} answered HTTP {status} with an unreadable body",
                {"url": url, "status": status},
                code=f"http_{status}",
            )

        body = root.find("Body")
        if body is None:
            raise AuthorityRejected(f"{url} did not answer with a SOAP envelope", {"url": url, "status": status})

        fault = body.find("Fault")
        if fault is not None:
            raise AuthorityRejected(
                (fault.findtext("faultstring") or "SOAP fault").strip(),
                {"url": url, "status": status},
                code=(fault.findtext("faultcode") or "fault").strip(),
            )
        if status >= 500:
            raise AuthorityUnreachable(f"{url} answered HTTP {status}", {"url": url, "status": status})
        if status >= 400:
            raise AuthorityRejected(f"{url} answered HTTP {status}", {"url": url, "status": status}, code=f"http_{status}")
        return body
