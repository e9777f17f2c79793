from __future__ import annotations

import base64
import hashlib
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from smartapp_sdk.exceptions import SmartThingsApiError

KEY_URL = "https://key.test"
KEY_ID = "/pl/useast1/3c-ab-1f"
DATE = "Thu, 05 Jan 2023 21:31:40 GMT"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class Signer:
    """Signs webhook requests the way the platform does."""

    def __init__(self, private_key: rsa.RSAPrivateKey, certificate_pem: str) -> None:
        self.private_key = private_key
        self.certificate_pem = certificate_pem

    def headers(
        self,
        body: bytes,
        *,
        path: str = "/",
        key_id: str = KEY_ID,
        method: str = "post",
    ) -> dict[str, str]:
        digest = f"SHA-256={_b64(hashlib.sha256(body).digest())}"
        signing_string = f"(request-target): {method} {path}\ndigest: {digest}\ndate: {DATE}"
        signature = self.private_key.sign(signing_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        authorization = (
            f'Signature keyId="{key_id}",signature="{_b64(signature)}",'
            'headers="(request-target) digest date",algorithm="rsa-sha256"'
        )
        return {
            "Authorization": authorization,
            "Digest": digest,
            "Date": DATE,
            "Content-Type": "application/json",
        }


class FakeTransport:
    """In-memory Transport double.

    ``texts`` maps URLs to certificate bodies for ``get_text``; ``replies``
    is consumed in order by ``request_json``. Exceptions in either are raised.
    """

    def __init__(self, texts: dict[str, Any] | None = None, replies: list[Any] | None = None) -> None:
        self.texts = dict(texts or {})
        self.replies = list(replies or [])
        self.get_calls: list[str] = []
        self.requests: list[dict[str, Any]] = []

    async def get_text(self, url: str) -> str:
        self.get_calls.append(url)
        value = self.texts.get(url)
        if isinstance(value, BaseException):
            raise value
        if value is None:
            raise SmartThingsApiError("HTTP 404", status_code=404, url=url)
        return value

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Any = None,
        json_body: Any = None,
        form: Any = None,
        params: Any = None,
    ) -> Any:
        self.requests.append(
            {
                "method": method,
                "url": url,
                "headers": dict(headers or {}),
                "json": json_body,
                "form": dict(form) if form is not None else None,
                "params": params,
            }
        )
        if not self.replies:
            raise AssertionError(f"Unexpected request {method} {url}")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def certificate_pem(private_key: rsa.RSAPrivateKey) -> str:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "smartapp-test")])
    now = datetime.now(UTC)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture
def signer(private_key: rsa.RSAPrivateKey, certificate_pem: str) -> Signer:
    return Signer(private_key, certificate_pem)


@pytest.fixture
def key_transport(certificate_pem: str) -> FakeTransport:
    return FakeTransport(texts={f"{KEY_URL}{KEY_ID}": certificate_pem})
