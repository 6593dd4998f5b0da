# wsframe

A small WebSocket (RFC 6455) toolkit for the server side, using only the
standard library.

## What is in it

- `wsframe.protocol`: frame parsing and encoding.
  - `read_frame(read_exact)` reads one frame through a callable that returns
    exactly the requested number of bytes. Masked payloads are unmasked.
  - `encode_frame(frame, mask=False)` serialises a `Frame`. With `mask=True`
    it uses a random masking key. It refuses fragmented control frames and
    control payloads over 125 bytes by raising `FrameError`.
  - The module also has `parse_header`, `apply_mask`, `is_control_opcode`,
    `parse_close_reason`, `is_valid_close_code`, `encode_close_payload`,
    `decode_utf8` and `fragment_message`.
  - Its types are `Opcode`, `CloseCode`, `Frame`, `FrameHeader`, `Message`
    and `CloseReason`, and its errors are `FrameError` and `Utf8Error`.
- `wsframe.connection`: `WebSocketConnection` wraps a connected socket.
  - `run()` is the receive loop. It puts fragmented messages back together,
    checks that text is valid UTF-8, answers pings with pongs, ignores pongs
    and enforces the control-frame rules.
  - Each complete `Message` goes to your handler. A protocol violation or a
    close frame from the peer ends the loop with a close frame.
  - Sending is done with `send_message`, `send_message_fragmented`,
    `send_frame` and `send_close`.
- `wsframe.manager`: `ThreadManager` starts one daemon listener thread for
  each connection and keeps track of the connections that are alive.
  - `len(manager)` gives their number, and `connection in manager` tells
    whether one is still registered.
- `wsframe.handler`: two ready-made handlers, `echo` and `echo_fragmented`.
  Both send each message back. `echo_fragmented` splits it to fit the
  socket's send buffer.
- `wsframe.handshake`: `handle_handshake(headers)` checks the headers of an
  upgrade request and returns a `HandshakeResponse`.
  - The response is `101 Switching Protocols` with `Sec-WebSocket-Accept` when
    the request is valid.
  - It is `426 Upgrade Required` when the upgrade is missing or the
    `Connection` header lacks `upgrade`.
  - It is `400 Bad Request` otherwise.
  - `to_bytes()` gives the response as HTTP/1.1 bytes.

## Installation

```
pip install wsframe
```

## Usage

Read the HTTP request head yourself, then check the upgrade and hand the
socket to the manager:

```python
from wsframe.handshake import handle_handshake
from wsframe.manager import ThreadManager
from wsframe.handler import echo

manager = ThreadManager()

def on_upgrade(sock, headers):
    # headers: a mapping or an iterable of (name, value) pairs
    response = handle_handshake(headers)
    sock.sendall(response.to_bytes())
    if response.accepted:
        manager.add_connection(sock, echo)
```

A handler is called with the connection and a `Message`, and returns a
`WebSocketAction`:

```python
from wsframe.connection import WebSocketAction
from wsframe.protocol import Message

def shout(connection, message):
    if message.is_text:
        text = message.data.decode("utf-8").upper()
        connection.send_message(Message(is_text=True, data=text.encode("utf-8")))
    return WebSocketAction.CONTINUE
```

The handler's return value decides what happens next:

- `WebSocketAction.CONTINUE` keeps the connection open.
- `WebSocketAction.CLOSE` closes it with code 1000.
- `WebSocketAction.ERROR` closes it with code 1002.

To shut down, send every client a "going away" close frame (code 1001) and
release the manager. `ThreadManager.close()` raises `RuntimeError` if
connections are still registered.

```python
manager.remove_all_connections()
manager.close()
```

## Working with frames directly

```python
from wsframe.protocol import Frame, Opcode, encode_frame, read_frame
import io

wire = encode_frame(Frame(fin=True, opcode=Opcode.TEXT, payload=b"hi"))
frame = read_frame(io.BytesIO(wire).read)
assert frame.payload == b"hi"
```

## What it does not do

- **No HTTP server.** The package does not listen on a port or parse HTTP
  requests. You accept the socket, read the request head and pass its headers
  to `handle_handshake`.
- **No subprotocols or extensions.** `Sec-WebSocket-Protocol` and
  `Sec-WebSocket-Extensions` are ignored, so there is no compression.
- **No client.** Frames sent by `WebSocketConnection` are never masked.

## Running the tests

```
pip install -e ".[test]"
pytest
```