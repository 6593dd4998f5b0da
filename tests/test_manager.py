import socket
import time

import pytest

from wsframe.connection import WebSocketAction
from wsframe.handler import echo
from wsframe.manager import ThreadManager
from wsframe.protocol import (
    CloseCode,
    CloseReason,
    Frame,
    Opcode,
    encode_close_payload,
    encode_frame,
    parse_close_reason,
    read_frame,
)


def _recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise EOFError("closed")
        data += chunk
    return data


def _client_pair():
    server, client = socket.socketpair()
    client.settimeout(5)
    return server, client


def _wait_until_empty(manager, timeout=5.0):
    deadline = time.monotonic() + timeout
    while len(manager) and time.monotonic() < deadline:
        time.sleep(0.01)
    return len(manager)


def test_add_connection_registers_it():
    manager = ThreadManager()
    server, client = _client_pair()
    try:
        connection = manager.add_connection(server, echo)
        assert len(manager) == 1
        assert connection in manager
    finally:
        manager.remove_all_connections()
        client.close()
    assert len(manager) == 0


def test_echo_and_planned_close():
    manager = ThreadManager()
    server, client = _client_pair()
    try:
        connection = manager.add_connection(server, echo)
        client.sendall(encode_frame(Frame(fin=True, opcode=Opcode.TEXT, payload=b"hello"), True))
        reply = read_frame(lambda n: _recv_exact(client, n))
        assert reply == Frame(fin=True, opcode=Opcode.TEXT, payload=b"hello")

        close_payload = encode_close_payload(CloseReason(code=CloseCode.NORMAL_CLOSURE))
        client.sendall(encode_frame(Frame(fin=True, opcode=Opcode.CLOSE, payload=close_payload), True))
        answer = read_frame(lambda n: _recv_exact(client, n))
        assert answer.opcode == Opcode.CLOSE
        assert parse_close_reason(answer).code == CloseCode.NORMAL_CLOSURE

        assert _wait_until_empty(manager) == 0
        assert connection not in manager
        assert connection.closed
    finally:
        client.close()


def test_handler_close_action_closes_connection():
    manager = ThreadManager()
    server, client = _client_pair()

    def stop(connection, message):
        return WebSocketAction.CLOSE

    try:
        manager.add_connection(server, stop)
        client.sendall(encode_frame(Frame(fin=True, opcode=Opcode.BIN, payload=b"\x01"), True))
        answer = read_frame(lambda n: _recv_exact(client, n))
        reason = parse_close_reason(answer)
        assert reason.code == CloseCode.NORMAL_CLOSURE
        assert reason.message == b"ServerApplication requested shutdown"
        assert _wait_until_empty(manager) == 0
    finally:
        client.close()


def test_remove_unknown_connection_raises():
    manager = ThreadManager()
    other = ThreadManager()
    server, client = _client_pair()
    try:
        connection = other.add_connection(server, echo)
        with pytest.raises(LookupError):
            manager.remove_connection(connection)
        assert connection in other
    finally:
        other.remove_all_connections()
        client.close()


def test_remove_none_raises():
    with pytest.raises(ValueError):
        ThreadManager().remove_connection(None)


def test_remove_connection_releases_it():
    manager = ThreadManager()
    server, client = _client_pair()
    try:
        connection = manager.add_connection(server, echo)
        manager.remove_connection(connection)
        assert len(manager) == 0
        assert connection.closed
        with pytest.raises(LookupError):
            manager.remove_connection(connection)
    finally:
        client.close()


def test_remove_all_sends_going_away():
    manager = ThreadManager()
    pairs = [_client_pair() for _ in range(2)]
    try:
        connections = [manager.add_connection(server, echo) for server, _ in pairs]
        assert len(manager) == 2
        manager.remove_all_connections()
        assert len(manager) == 0
        assert all(connection.closed for connection in connections)
        for _, client in pairs:
            frame = read_frame(lambda n, c=client: _recv_exact(c, n))
            reason = parse_close_reason(frame)
            assert reason.code == CloseCode.GOING_AWAY
            assert reason.message == b"Server is shutting down"
    finally:
        for _, client in pairs:
            client.close()


def test_close_refuses_while_connections_remain():
    manager = ThreadManager()
    server, client = _client_pair()
    try:
        manager.add_connection(server, echo)
        with pytest.raises(RuntimeError):
            manager.close()
        manager.remove_all_connections()
        manager.close()
        with pytest.raises(RuntimeError):
            manager.add_connection(*socket.socketpair()[:1], echo)
    finally:
        client.close()