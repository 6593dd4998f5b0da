import base64
from http import HTTPStatus

import pytest

from wsframe.handshake import (
    HandshakeResponse,
    generate_key_answer,
    handle_handshake,
    is_valid_sec_key,
)

SAMPLE_KEY = "dGhlIHNhbXBsZSBub25jZQ=="


def _request(**overrides):
    headers = {
        "Host": "localhost",
        "Upgrade": "websocket",
        "Connection": "Upgrade",
        "Sec-WebSocket-Key": SAMPLE_KEY,
        "Sec-WebSocket-Version": "13",
    }
    for key, value in overrides.items():
        name = key.replace("_", "-")
        if value is None:
            headers.pop(name)
        else:
            headers[name] = value
    return headers


def test_generate_key_answer_matches_rfc_example():
    assert generate_key_answer(SAMPLE_KEY) == "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def test_generate_key_answer_is_base64_of_sha1():
    answer = generate_key_answer(SAMPLE_KEY)
    assert len(base64.b64decode(answer)) == 20


def test_valid_sec_key():
    assert is_valid_sec_key(SAMPLE_KEY) is True
    assert is_valid_sec_key(base64.b64encode(bytes(16)).decode()) is True


@pytest.mark.parametrize(
    "key",
    [
        base64.b64encode(bytes(15)).decode(),
        base64.b64encode(bytes(17)).decode(),
        "not base64 !!",
        "",
        "ümlaut",
    ],
)
def test_invalid_sec_key(key):
    assert is_valid_sec_key(key) is False


def test_successful_handshake():
    response = handle_handshake(_request())
    assert response.status == HTTPStatus.SWITCHING_PROTOCOLS
    assert response.accepted is True
    assert dict(response.headers) == {
        "Upgrade": "WebSocket",
        "Connection": "Upgrade",
        "Sec-WebSocket-Accept": generate_key_answer(SAMPLE_KEY),
    }
    assert response.body is None


def test_handshake_accepts_pairs_and_case_insensitive_names():
    pairs = [(key.upper(), value) for key, value in _request().items()]
    pairs.append(("Origin", "http://example.com"))
    response = handle_handshake(pairs)
    assert response.status == HTTPStatus.SWITCHING_PROTOCOLS


def test_connection_header_with_several_tokens():
    response = handle_handshake(_request(Connection="keep-alive, Upgrade"))
    assert response.accepted is True


def test_upgrade_without_websocket_is_bad_request():
    response = handle_handshake(_request(Upgrade="h2c"))
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body.endswith("upgrade does not contain 'websocket'")
    assert response.accepted is False


def test_connection_without_upgrade_requires_upgrade():
    response = handle_handshake(_request(Connection="keep-alive"))
    assert response.status == HTTPStatus.UPGRADE_REQUIRED
    assert ("Upgrade", "WebSocket") in response.headers


def test_missing_upgrade_header_requires_upgrade():
    response = handle_handshake(_request(Upgrade=None))
    assert response.status == HTTPStatus.UPGRADE_REQUIRED


def test_invalid_key_is_bad_request():
    response = handle_handshake(_request(Sec_WebSocket_Key="abc"))
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body.endswith("sec-websocket-key is invalid")


def test_wrong_version_is_bad_request():
    response = handle_handshake(_request(Sec_WebSocket_Version="8"))
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body.endswith("sec-websocket-version has invalid value")


@pytest.mark.parametrize("missing", ["Host", "Sec_WebSocket_Key", "Sec_WebSocket_Version"])
def test_missing_required_header(missing):
    response = handle_handshake(_request(**{missing: None}))
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body.endswith("missing required headers")


def test_to_bytes_switching_protocols():
    wire = handle_handshake(_request()).to_bytes()
    assert wire.startswith(b"HTTP/1.1 101 Switching Protocols\r\n")
    assert wire.endswith(b"\r\n\r\n")
    assert b"Sec-WebSocket-Accept: " + generate_key_answer(SAMPLE_KEY).encode() in wire


def test_to_bytes_error_carries_body_and_length():
    response = handle_handshake(_request(Sec_WebSocket_Version="8"))
    wire = response.to_bytes()
    head, _, body = wire.partition(b"\r\n\r\n")
    assert body == response.body.encode()
    assert f"Content-Length: {len(body)}".encode() in head
    assert b"Content-Type: text/plain" in head


def test_response_equality_ignores_nothing_relevant():
    first = HandshakeResponse(status=HTTPStatus.BAD_REQUEST, body="x")
    second = HandshakeResponse(status=HTTPStatus.BAD_REQUEST, body="x")
    assert first == second
    assert first.to_bytes() == second.to_bytes()