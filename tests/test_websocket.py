import pytest

from vweb.websocket import (
    WebSocketFrameError,
    WebSocketParser,
    WebSocketURL,
    WsFlags,
    apply_mask,
    build_frame,
    calc_frame_size,
    generate_mask,
    parse_websocket_url,
)

RFC_MASK = bytes((0x37, 0xFA, 0x21, 0x3D))


def _collector():
    parser = WebSocketParser()
    events = []
    parser.on_frame_header = lambda p: events.append(("header", int(p.flags), p.length))
    parser.on_frame_body = lambda p, chunk: events.append(("body", chunk))
    parser.on_frame_end = lambda p: events.append(("end",))
    return parser, events


def _frames(events):
    frames, current = [], None
    for event in events:
        if event[0] == "header":
            current = [event[1], b""]
        elif event[0] == "body":
            current[1] += event[1]
        else:
            frames.append(tuple(current))
    return frames


def test_build_unmasked_text_frame_rfc_example():
    assert build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"Hello") == b"\x81\x05Hello"


def test_build_masked_text_frame_rfc_example():
    frame = build_frame(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK, RFC_MASK, b"Hello")
    assert frame == b"\x81\x85\x37\xfa\x21\x3d\x7f\x9f\x4d\x51\x58"


def test_build_medium_and_large_length_headers():
    medium = build_frame(WsFlags.BINARY | WsFlags.FINAL, None, bytes(256))
    assert medium[:4] == b"\x82\x7e\x01\x00"
    large = build_frame(WsFlags.BINARY | WsFlags.FINAL, None, bytes(65536))
    assert large[:10] == b"\x82\x7f\x00\x00\x00\x00\x00\x01\x00\x00"


@pytest.mark.parametrize("size", [0, 1, 125, 126, 127, 65535, 65536, 70000])
@pytest.mark.parametrize("masked", [False, True])
def test_calc_frame_size_matches_built_frame(size, masked):
    flags = WsFlags.BINARY | WsFlags.FINAL
    if masked:
        flags |= WsFlags.HAS_MASK
    assert calc_frame_size(flags, size) == len(build_frame(flags, RFC_MASK, bytes(size)))


def test_masked_frame_without_mask_gets_one():
    frame = build_frame(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK, None, b"abc")
    parser, events = _collector()
    parser.feed(frame)
    assert _frames(events) == [(int(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK), b"abc")]


def test_apply_mask_round_trip_and_offset():
    data = b"some payload bytes"
    masked, offset = apply_mask(data, RFC_MASK, 0)
    assert offset == len(data) % 4
    assert apply_mask(masked, RFC_MASK, 0)[0] == data


def test_apply_mask_split_matches_one_shot():
    data = bytes(range(50))
    whole, _ = apply_mask(data, RFC_MASK, 0)
    first, offset = apply_mask(data[:7], RFC_MASK, 0)
    second, _ = apply_mask(data[7:], RFC_MASK, offset)
    assert first + second == whole


def test_apply_mask_rejects_bad_mask():
    with pytest.raises(ValueError):
        apply_mask(b"abc", b"\x01\x02", 0)


def test_generate_mask_length():
    assert len(generate_mask()) == 4


def test_parse_websocket_url():
    url = parse_websocket_url("wss://example.com:8443/chat/room")
    assert url == WebSocketURL("wss", "example.com", 8443, "/chat/room")


def test_parse_websocket_url_without_path():
    assert parse_websocket_url("ws://localhost:9000").path == ""


@pytest.mark.parametrize(
    "url", ["ws://example.com/chat", "http://example.com:80/", "ws://:80/x"]
)
def test_parse_websocket_url_invalid(url):
    with pytest.raises(ValueError):
        parse_websocket_url(url)


def test_parser_unmasks_payload_and_exposes_flags():
    parser, events = _collector()
    frame = build_frame(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK, RFC_MASK, b"Hello")
    assert parser.feed(frame) == len(frame)
    assert _frames(events) == [(int(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK), b"Hello")]
    assert parser.mask == RFC_MASK
    assert parser.is_text and parser.is_final and parser.has_mask


def test_parser_byte_by_byte_multiple_frames():
    frames = [
        (WsFlags.TEXT, b"part one "),
        (WsFlags.CONTINUE | WsFlags.FINAL | WsFlags.HAS_MASK, bytes(300)),
        (WsFlags.BINARY | WsFlags.FINAL, bytes(range(256)) * 300),
    ]
    stream = b"".join(build_frame(flags, RFC_MASK, payload) for flags, payload in frames)
    parser, events = _collector()
    for i in range(len(stream)):
        parser.feed(stream[i:i + 1])
    assert _frames(events) == [(int(flags), payload) for flags, payload in frames]


def test_parser_empty_frame_has_no_body():
    parser, events = _collector()
    parser.feed(build_frame(WsFlags.CLOSE | WsFlags.FINAL, None, b""))
    assert events == [("header", int(WsFlags.CLOSE | WsFlags.FINAL), 0), ("end",)]
    assert parser.is_close


def test_parser_ping_detection():
    parser, _ = _collector()
    parser.feed(build_frame(WsFlags.PING | WsFlags.FINAL, None, b"x"))
    assert parser.is_ping and not parser.is_pong


def test_parser_callback_failure_raises():
    parser = WebSocketParser()
    parser.on_frame_header = lambda p: 1
    with pytest.raises(WebSocketFrameError):
        parser.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"hi"))


def test_parser_rejects_oversized_length():
    parser = WebSocketParser()
    with pytest.raises(WebSocketFrameError):
        parser.feed(b"\x82\x7f\x80\x00\x00\x00\x00\x00\x00\x00")


def test_parser_reset_discards_partial_frame():
    parser, events = _collector()
    parser.feed(b"\x81")
    parser.reset()
    parser.feed(build_frame(WsFlags.TEXT | WsFlags.FINAL, None, b"ok"))
    assert _frames(events) == [(int(WsFlags.TEXT | WsFlags.FINAL), b"ok")]