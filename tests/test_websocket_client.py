import base64
import socket
import threading

import pytest

from vweb.client import HttpClientError
from vweb.websocket import WebSocketParser, WsFlags, build_frame
from vweb.websocket_client import WebSocketClient, generate_websocket_key

UPGRADE = (
    b"HTTP/1.1 101 Switching Protocols\r\n"
    b"Upgrade: websocket\r\n"
    b"Connection: Upgrade\r\n\r\n"
)


def _serve(handler):
    listener = socket.create_server(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    result = {}

    def run():
        try:
            conn, _ = listener.accept()
            conn.settimeout(5)
            with conn:
                handler(conn, result)
        finally:
            listener.close()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return port, thread, result


def _read_request(conn):
    buf = b""
    while b"\r\n\r\n" not in buf:
        data = conn.recv(4096)
        if not data:
            break
        buf += data
    head, _, rest = buf.partition(b"\r\n\r\n")
    return head, rest


def _read_frames(conn, count, initial=b""):
    parser = WebSocketParser()
    frames = []
    current = bytearray()

    def on_header(p):
        current.clear()

    def on_body(p, data):
        current.extend(data)

    def on_end(p):
        frames.append((p.flags, bytes(current)))

    parser.on_frame_header = on_header
    parser.on_frame_body = on_body
    parser.on_frame_end = on_end
    if initial:
        parser.feed(initial)
    while len(frames) < count:
        try:
            data = conn.recv(4096)
        except OSError:
            break
        if not data:
            break
        parser.feed(data)
    return frames


def _drain(conn):
    try:
        while conn.recv(4096):
            pass
    except OSError:
        pass


def test_generate_websocket_key_is_16_nonzero_bytes():
    key = generate_websocket_key()
    raw = base64.b64decode(key)
    assert len(raw) == 16
    assert 0 not in raw
    assert len(key) == 24


def test_feed_text_frame_fills_body_and_marks_parsed():
    client = WebSocketClient()
    finals = []
    finished = []
    client.on_final = lambda c, status: finals.append(status)
    client.on_parser_finish = lambda c, status: finished.append(status)
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"hello"))
    assert client.parsed is True
    assert finals == [0]
    assert finished == [0]
    assert client.take_websocket_body() == b"hello"
    assert client.take_websocket_body() == b""


def test_feed_split_frame_completes_on_second_piece():
    client = WebSocketClient()
    frame = build_frame(WsFlags.BINARY | WsFlags.FINAL, None, b"abcdef")
    client.feed(frame[:4])
    assert client.parsed is False
    client.feed(frame[4:])
    assert client.parsed is True
    assert bytes(client.websocket_body) == b"abcdef"


def test_masked_frame_reports_mask_and_unmasks_payload():
    client = WebSocketClient()
    masks = []
    client.on_mask = lambda c, mask: masks.append(mask)
    mask = b"\x01\x02\x03\x04"
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK, mask, b"data"))
    assert masks == [mask]
    assert client.take_websocket_body() == b"data"


def test_body_callback_returning_true_clears_buffer():
    client = WebSocketClient()
    seen = []

    def on_body(c, body):
        seen.append(body)
        return True

    client.on_websocket_body = on_body
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"xyz"))
    assert seen == [b"xyz"]
    assert len(client.websocket_body) == 0


def test_take_websocket_body_partial_and_clear():
    client = WebSocketClient()
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"abcdef"))
    assert client.take_websocket_body(2) == b"ab"
    assert client.take_websocket_body(10) == b"cdef"
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"more"))
    client.clear_websocket_body()
    assert client.take_websocket_body() == b""


def test_body_over_cache_limit_is_dropped():
    client = WebSocketClient()
    client.max_body_cache_length = 2
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"abc"))
    client.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"def"))
    assert bytes(client.websocket_body) == b"abc"
    assert "to long" in client.error_message


def test_send_without_connection_raises_and_reports_failure():
    client = WebSocketClient()
    statuses = []
    client.on_send_finish = lambda c, status: statuses.append(status)
    with pytest.raises(HttpClientError):
        client.send_text("hello")
    assert statuses == [-1]


def test_wait_frame_without_connection_raises():
    client = WebSocketClient()
    with pytest.raises(HttpClientError):
        client.wait_frame(0.1)


@pytest.mark.parametrize("url", ["http://example.com:80/", "ws://example.com/chat"])
def test_websocket_connect_rejects_bad_url(url):
    client = WebSocketClient()
    with pytest.raises(HttpClientError):
        client.websocket_connect(url)
    assert client.error_message == "WebSocketURL is error :" + url


def test_handshake_sends_upgrade_request_and_reads_leftover_frame():
    def handler(conn, result):
        head, _ = _read_request(conn)
        result["request"] = head
        conn.sendall(UPGRADE + build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"hi"))
        _drain(conn)

    port, thread, result = _serve(handler)
    client = WebSocketClient(timeout=5)
    statuses = []
    client.on_websocket_connect = lambda c, status: statuses.append(status)
    client.websocket_connect(f"ws://127.0.0.1:{port}/chat")
    assert statuses == [0]
    assert client.response.status_code == 101
    assert client.take_websocket_body() == b"hi"
    client.close()
    thread.join(5)
    request = result["request"].decode("latin-1")
    assert request.startswith("GET /chat HTTP/1.1")
    assert "Upgrade: websocket" in request
    assert "Sec-WebSocket-Version: 13" in request
    assert "Sec-WebSocket-Key: " in request


def test_handshake_failure_raises_and_reports_minus_one():
    def handler(conn, result):
        _read_request(conn)
        conn.sendall(b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\n\r\n")
        _drain(conn)

    port, thread, _ = _serve(handler)
    client = WebSocketClient(timeout=5)
    statuses = []
    client.on_websocket_connect = lambda c, status: statuses.append(status)
    with pytest.raises(HttpClientError):
        client.websocket_connect(f"ws://127.0.0.1:{port}/missing")
    thread.join(5)
    assert statuses == [-1]
    assert client.connected is False


def test_handshake_follows_redirect():
    def final_handler(conn, result):
        head, _ = _read_request(conn)
        result["request"] = head
        conn.sendall(UPGRADE)
        _drain(conn)

    port2, thread2, result2 = _serve(final_handler)

    def redirect_handler(conn, result):
        _read_request(conn)
        conn.sendall(
            b"HTTP/1.1 302 Found\r\nLocation: ws://127.0.0.1:%d/next\r\n"
            b"Content-Length: 0\r\n\r\n" % port2
        )
        _drain(conn)

    port1, thread1, _ = _serve(redirect_handler)
    client = WebSocketClient(timeout=5)
    client.websocket_connect(f"ws://127.0.0.1:{port1}/start")
    assert client.response.status_code == 101
    client.close()
    thread1.join(5)
    thread2.join(5)
    assert result2["request"].startswith(b"GET /next HTTP/1.1")


def test_send_text_and_binary_frames_reach_server():
    def handler(conn, result):
        _, rest = _read_request(conn)
        conn.sendall(UPGRADE)
        result["frames"] = _read_frames(conn, 2, rest)
        _drain(conn)

    port, thread, result = _serve(handler)
    client = WebSocketClient(timeout=5)
    sent = []
    client.on_send_finish = lambda c, status: sent.append(status)
    client.websocket_connect(f"ws://127.0.0.1:{port}/")
    client.send_text("hello")
    client.send_binary(b"\x00\x01", final=False, mask=False)
    client.close()
    thread.join(5)
    frames = result["frames"]
    assert frames[0] == (WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK, b"hello")
    assert frames[1] == (WsFlags.BINARY, b"\x00\x01")
    assert sent == [0, 0]


def test_ping_waits_for_pong():
    def handler(conn, result):
        _, rest = _read_request(conn)
        conn.sendall(UPGRADE)
        result["frames"] = _read_frames(conn, 1, rest)
        conn.sendall(build_frame(WsFlags.PONG | WsFlags.FINAL, None, b""))
        _drain(conn)

    port, thread, result = _serve(handler)
    client = WebSocketClient(timeout=5)
    client.websocket_connect(f"ws://127.0.0.1:{port}/")
    delay = client.ping()
    assert delay >= 0
    assert client.parser.is_pong
    client.close()
    thread.join(5)
    flags, payload = result["frames"][0]
    assert flags & WsFlags.OPCODE_MASK == WsFlags.PING
    assert payload == b""


def test_close_frame_from_peer_is_answered():
    def handler(conn, result):
        _, rest = _read_request(conn)
        conn.sendall(UPGRADE + build_frame(WsFlags.CLOSE | WsFlags.FINAL, None, b""))
        result["frames"] = _read_frames(conn, 1, rest)

    port, thread, result = _serve(handler)
    client = WebSocketClient(timeout=5)
    closes = []
    client.on_websocket_close = lambda c, flags: closes.append(flags)
    client.websocket_connect(f"ws://127.0.0.1:{port}/")
    thread.join(5)
    assert len(closes) == 1
    assert closes[0] & WsFlags.OPCODE_MASK == WsFlags.CLOSE
    assert client.sent_close is True
    assert client.connected is False
    assert result["frames"][0][0] & WsFlags.OPCODE_MASK == WsFlags.CLOSE


def test_websocket_close_sends_close_frame():
    def handler(conn, result):
        _, rest = _read_request(conn)
        conn.sendall(UPGRADE)
        result["frames"] = _read_frames(conn, 1, rest)
        conn.sendall(build_frame(WsFlags.CLOSE | WsFlags.FINAL, None, b""))
        _drain(conn)

    port, thread, result = _serve(handler)
    client = WebSocketClient(timeout=5)
    client.websocket_connect(f"ws://127.0.0.1:{port}/")
    client.websocket_close()
    thread.join(5)
    assert client.connected is False
    assert client.sent_close is True
    assert result["frames"][0][0] & WsFlags.OPCODE_MASK == WsFlags.CLOSE