from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest
from conftest import DATE, KEY_ID, KEY_URL, FakeTransport, Signer
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from smartapp_sdk.exceptions import CertificateError, MalformedSignatureError, SmartThingsTransportError
from smartapp_sdk.signature import (
    SignatureParams,
    SignatureVerifier,
    SignedRequest,
    build_signing_string,
    load_public_key,
    parse_signature,
    verify_signature,
)

BODY = json.dumps({"messageType": "EVENT", "eventData": {}}).encode("utf-8")


def _request(headers: dict[str, str], body: bytes = BODY, path: str = "/") -> SignedRequest:
    return SignedRequest(method="POST", path=path, headers=headers, body=body)


@pytest.mark.asyncio
async def test_valid_signature_is_authorized_and_key_is_cached(signer: Signer, key_transport: FakeTransport) -> None:
    verifier = SignatureVerifier(KEY_URL, transport=key_transport)

    assert await verifier.is_authorized(_request(signer.headers(BODY))) is True
    assert await verifier.is_authorized(_request(signer.headers(BODY))) is True

    assert key_transport.get_calls == [f"{KEY_URL}{KEY_ID}"]
    assert verifier.key_id == KEY_ID


@pytest.mark.asyncio
async def test_new_key_id_triggers_a_fetch(signer: Signer, certificate_pem: str) -> None:
    other_key_id = "/pl/useast1/rotated"
    transport = FakeTransport(
        texts={f"{KEY_URL}{KEY_ID}": certificate_pem, f"{KEY_URL}{other_key_id}": certificate_pem},
    )
    verifier = SignatureVerifier(KEY_URL, transport=transport)

    assert await verifier.is_authorized(_request(signer.headers(BODY)))
    assert await verifier.is_authorized(_request(signer.headers(BODY, key_id=other_key_id)))

    assert transport.get_calls == [f"{KEY_URL}{KEY_ID}", f"{KEY_URL}{other_key_id}"]
    assert verifier.key_id == other_key_id


@pytest.mark.asyncio
async def test_mutated_signature_is_rejected(signer: Signer, key_transport: FakeTransport) -> None:
    headers = signer.headers(BODY)
    encoded = headers["Authorization"].split('signature="', 1)[1].split('"', 1)[0]
    raw = bytearray(base64.b64decode(encoded))
    raw[0] ^= 0x01
    headers["Authorization"] = headers["Authorization"].replace(encoded, base64.b64encode(bytes(raw)).decode())

    verifier = SignatureVerifier(KEY_URL, transport=key_transport)
    assert await verifier.is_authorized(_request(headers)) is False


@pytest.mark.asyncio
async def test_tampered_body_fails_digest_check(signer: Signer, key_transport: FakeTransport) -> None:
    verifier = SignatureVerifier(KEY_URL, transport=key_transport)
    headers = signer.headers(BODY)

    assert await verifier.is_authorized(_request(headers, body=BODY + b" ")) is False
    # The digest is checked before any key is fetched.
    assert key_transport.get_calls == []


@pytest.mark.asyncio
async def test_changed_request_target_is_rejected(signer: Signer, key_transport: FakeTransport) -> None:
    verifier = SignatureVerifier(KEY_URL, transport=key_transport)
    headers = signer.headers(BODY, path="/smartapp")

    assert await verifier.is_authorized(_request(headers, path="/other")) is False


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(key_transport: FakeTransport) -> None:
    verifier = SignatureVerifier(KEY_URL, transport=key_transport)

    assert await verifier.is_authorized(_request({"Date": DATE})) is False
    assert key_transport.get_calls == []


@pytest.mark.asyncio
async def test_key_server_failures_are_rejected(signer: Signer) -> None:
    not_found = SignatureVerifier(KEY_URL, transport=FakeTransport())
    assert await not_found.is_authorized(_request(signer.headers(BODY))) is False

    unreachable = SignatureVerifier(
        KEY_URL,
        transport=FakeTransport(texts={f"{KEY_URL}{KEY_ID}": SmartThingsTransportError("boom")}),
    )
    assert await unreachable.is_authorized(_request(signer.headers(BODY))) is False


@pytest.mark.asyncio
async def test_unparsable_certificate_is_rejected_and_not_cached(signer: Signer) -> None:
    transport = FakeTransport(texts={f"{KEY_URL}{KEY_ID}": "not a certificate"})
    verifier = SignatureVerifier(KEY_URL, transport=transport)

    assert await verifier.is_authorized(_request(signer.headers(BODY))) is False
    assert verifier.key_id is None
    assert verifier.public_key is None


@pytest.mark.asyncio
async def test_static_public_key_skips_fetching(signer: Signer, certificate_pem: str) -> None:
    transport = FakeTransport()
    verifier = SignatureVerifier(KEY_URL, transport=transport)
    verifier.set_public_key(certificate_pem)

    assert await verifier.is_authorized(_request(signer.headers(BODY))) is True
    assert transport.get_calls == []
    assert verifier.uses_static_key


def test_static_public_key_can_be_read_from_a_file(certificate_pem: str, tmp_path: Path) -> None:
    path = tmp_path / "smartthings.pem"
    path.write_text(certificate_pem, encoding="utf-8")

    verifier = SignatureVerifier(KEY_URL, transport=FakeTransport())
    verifier.set_public_key(f"@{path}")

    assert verifier.public_key is not None


def test_parse_signature_accepts_signature_header() -> None:
    encoded = base64.b64encode(b"sig").decode()
    request = _request({"Signature": f'keyId="k1",signature="{encoded}",algorithm="rsa-sha256"'})

    params = parse_signature(request)

    assert params.key_id == "k1"
    assert params.signature == b"sig"
    assert params.headers == ("date",)
    assert params.algorithm == "rsa-sha256"


@pytest.mark.parametrize(
    "authorization",
    [
        'Signature signature="c2ln"',
        'Signature keyId="k1"',
        'Signature keyId="k1",signature="%%%"',
        "Bearer abc",
    ],
)
def test_parse_signature_rejects_malformed_headers(authorization: str) -> None:
    with pytest.raises(MalformedSignatureError):
        parse_signature(_request({"Authorization": authorization}))


def test_build_signing_string_orders_lines_by_signed_headers() -> None:
    request = SignedRequest(
        method="POST",
        path="/smartapp?x=1",
        headers={"Date": DATE, "Digest": "SHA-256=abc"},
    )

    signing_string = build_signing_string(request, ("(request-target)", "digest", "date"))

    assert signing_string == f"(request-target): post /smartapp?x=1\ndigest: SHA-256=abc\ndate: {DATE}"


def test_build_signing_string_requires_signed_headers() -> None:
    with pytest.raises(MalformedSignatureError):
        build_signing_string(_request({}), ("date",))


def test_load_public_key_rejects_garbage() -> None:
    with pytest.raises(CertificateError):
        load_public_key("-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----\n")


def test_ecdsa_signatures_are_verified() -> None:
    key = ec.generate_private_key(ec.SECP256R1())
    pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    signing_string = f"date: {DATE}"
    signature = key.sign(signing_string.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    params = SignatureParams(key_id="k", signature=signature, algorithm="ecdsa-sha256")

    assert verify_signature(params, signing_string, load_public_key(pem)) is True
    assert verify_signature(params, f"date: {DATE}x", load_public_key(pem)) is False
