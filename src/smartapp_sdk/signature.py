"""HTTP Signature verification for inbound webhook requests.

The platform signs every webhook request following the HTTP Signatures
draft (``Authorization: Signature keyId="...",signature="...",
headers="(request-target) digest date",algorithm="rsa-sha256"``). The
``keyId`` names a certificate published on the key server; it is fetched on
first sight and cached until a request arrives with a different ``keyId``.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import hashlib
import hmac
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from aiohttp import web
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from smartapp_sdk._transport import HttpTransport, Transport
from smartapp_sdk.exceptions import (
    CertificateError,
    DigestMismatchError,
    KeyFetchError,
    MalformedSignatureError,
    SignatureError,
    SmartAppError,
    SmartThingsApiError,
)

_logger = logging.getLogger(__name__)

_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey


@dataclasses.dataclass(frozen=True)
class SignedRequest:
    """Transport-neutral view of an inbound request.

    ``path`` includes the query string, as covered by ``(request-target)``.
    ``body`` is only needed when the ``digest`` header is signed.
    """

    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @classmethod
    async def from_aiohttp(cls, request: web.Request) -> SignedRequest:
        body = await request.read() if request.can_read_body else b""
        return cls(
            method=request.method,
            path=request.path_qs,
            headers={key: value for key, value in request.headers.items()},
            body=body,
        )


@dataclasses.dataclass(frozen=True)
class SignatureParams:
    key_id: str
    signature: bytes
    headers: tuple[str, ...] = ("date",)
    algorithm: str | None = None


def parse_signature(request: SignedRequest) -> SignatureParams:
    """Extract the signature parameters from ``Authorization`` or ``Signature``.

    Raises
    ------
    MalformedSignatureError
        If no signature is present or a required parameter is missing.
    """
    authorization = request.header("authorization")
    if authorization and authorization[:10].lower() == "signature ":
        params_text = authorization[10:]
    else:
        params_text = request.header("signature") or ""
    if not params_text:
        raise MalformedSignatureError("Request carries no HTTP signature")

    params = dict(_PARAM_RE.findall(params_text))
    key_id = params.get("keyId")
    encoded = params.get("signature")
    if not key_id or not encoded:
        raise MalformedSignatureError("Signature is missing keyId or signature parameter")
    try:
        signature = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedSignatureError("Signature is not valid base64") from exc

    header_names = tuple(params.get("headers", "date").lower().split())
    if not header_names:
        raise MalformedSignatureError("Signature covers no headers")
    return SignatureParams(
        key_id=key_id,
        signature=signature,
        headers=header_names,
        algorithm=params.get("algorithm"),
    )


def build_signing_string(request: SignedRequest, header_names: tuple[str, ...]) -> str:
    """Rebuild the string the sender signed, one ``name: value`` line per header."""
    lines: list[str] = []
    for name in header_names:
        if name == "(request-target)":
            lines.append(f"(request-target): {request.method.lower()} {request.path}")
            continue
        value = request.header(name)
        if value is None:
            raise MalformedSignatureError(f"Signed header '{name}' is missing from the request")
        lines.append(f"{name}: {value.strip()}")
    return "\n".join(lines)


def verify_digest(request: SignedRequest) -> None:
    """Check a ``Digest: SHA-256=<base64>`` header against the request body."""
    digest_header = request.header("digest") or ""
    expected: str | None = None
    for part in digest_header.split(","):
        algorithm, _, value = part.strip().partition("=")
        if algorithm.lower() == "sha-256":
            expected = value
            break
    if expected is None:
        raise DigestMismatchError("Digest header carries no SHA-256 value")
    actual = base64.b64encode(hashlib.sha256(request.body or b"").digest()).decode("ascii")
    if not hmac.compare_digest(actual, expected):
        raise DigestMismatchError("Request body does not match the Digest header")


def load_public_key(pem: str | bytes) -> PublicKey:
    """Load a public key from a PEM certificate or a PEM public key."""
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    key: Any
    try:
        key = x509.load_pem_x509_certificate(data).public_key()
    except ValueError:
        try:
            key = serialization.load_pem_public_key(data)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise CertificateError(f"Could not parse PEM certificate or public key: {exc}") from exc
    if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
        raise CertificateError(f"Unsupported public key type {type(key).__name__}")
    return key


def verify_signature(params: SignatureParams, signing_string: str, public_key: PublicKey) -> bool:
    """Return whether *params.signature* signs *signing_string* under *public_key*."""
    algorithm = (params.algorithm or "hs2019").lower()
    data = signing_string.encode("utf-8")
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            if algorithm in ("rsa-sha256", "hs2019"):
                digest: hashes.HashAlgorithm = hashes.SHA256()
            elif algorithm == "rsa-sha512":
                digest = hashes.SHA512()
            else:
                raise MalformedSignatureError(f"Algorithm '{algorithm}' does not match an RSA key")
            public_key.verify(params.signature, data, padding.PKCS1v15(), digest)
        else:
            if algorithm not in ("ecdsa-sha256", "hs2019"):
                raise MalformedSignatureError(f"Algorithm '{algorithm}' does not match an EC key")
            public_key.verify(params.signature, data, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


class SignatureVerifier:
    """Validates inbound request signatures with a cached public key.

    The cache holds a single ``(key_id, public_key)`` pair and is replaced
    whenever a request names another ``keyId``. It is not locked: two
    concurrent requests that both miss may both fetch and overwrite the pair
    with the same key, which is harmless.

    Parameters
    ----------
    key_url : str
        Key server base URL; the ``keyId`` is appended verbatim.
    transport : Transport or None
        Transport used for certificate fetches.
    """

    def __init__(self, key_url: str, *, transport: Transport | None = None) -> None:
        self.key_url = key_url
        self._transport: Transport = transport or HttpTransport()
        self.key_id: str | None = None
        self.public_key: PublicKey | None = None
        self.uses_static_key = False

    def set_public_key(self, cert_key: str) -> None:
        """Use a static key (PEM text, or ``@path`` to read it from a file).

        Disables fetching by ``keyId`` entirely.
        """
        if cert_key.startswith("@"):
            cert_key = Path(cert_key[1:]).read_text(encoding="utf-8")
        self.public_key = load_public_key(cert_key)
        self.key_id = None
        self.uses_static_key = True

    async def _fetch_certificate(self, key_id: str) -> str:
        url = f"{self.key_url}{key_id}"
        try:
            return await self._transport.get_text(url)
        except SmartThingsApiError as exc:
            raise KeyFetchError(
                f"Key server answered {exc.status_code} for {url}",
                key_id=key_id,
                status_code=exc.status_code,
            ) from exc
        except SmartAppError as exc:
            raise KeyFetchError(f"Could not fetch certificate {url}: {exc}", key_id=key_id) from exc

    async def _resolve_key(self, key_id: str) -> PublicKey:
        if self.uses_static_key or (key_id == self.key_id and self.public_key is not None):
            if self.public_key is None:
                raise CertificateError("No static public key configured")
            return self.public_key
        _logger.debug("Fetching certificate for keyId %s", key_id)
        public_key = load_public_key(await self._fetch_certificate(key_id))
        self.key_id = key_id
        self.public_key = public_key
        return public_key

    async def is_authorized(self, request: SignedRequest) -> bool:
        """Return whether *request* carries a valid signature. Never raises."""
        try:
            params = parse_signature(request)
            if "digest" in params.headers and request.body is not None:
                verify_digest(request)
            public_key = await self._resolve_key(params.key_id)
            signing_string = build_signing_string(request, params.headers)
            if not verify_signature(params, signing_string, public_key):
                _logger.error("forbidden - failed signature verification (keyId=%s)", params.key_id)
                return False
        except MalformedSignatureError as exc:
            _logger.error("forbidden - malformed request signature: %s", exc)
            return False
        except DigestMismatchError as exc:
            _logger.error("forbidden - digest mismatch: %s", exc)
            return False
        except KeyFetchError as exc:
            _logger.error("forbidden - key fetch failed for keyId %s: %s", exc.key_id, exc)
            return False
        except CertificateError as exc:
            _logger.error("forbidden - certificate parse failed: %s", exc)
            return False
        except SignatureError as exc:
            _logger.error("forbidden - signature error: %s", exc)
            return False
        except Exception:
            _logger.exception("forbidden - unexpected error verifying request signature")
            return False
        return True
