# vweb

A blocking HTTP/1.1 and WebSocket client built only on the standard library.
The package has these modules:

- `vweb.httpparser`: `HttpParser` is an incremental HTTP/1.x message parser
  that is driven by callbacks. The module also has `parse_url`, which returns
  a `ParsedURL`, and the `MethodType` enum with `method_name` and
  `method_type`.
- `vweb.compression`: one-shot gzip with `gzip_compress` and
  `gzip_decompress`, and streaming gzip with `GzipCompressor` and
  `GzipDecompressor`. Failures raise `GzipError`.
- `vweb.websocket`: WebSocket frames. It has `build_frame`,
  `calc_frame_size`, `apply_mask`, `generate_mask`, `parse_websocket_url`,
  the `WsFlags` bits and the incremental `WebSocketParser`.
- `vweb.request` / `vweb.response`: `HttpRequest` and `HttpResponse`. Each
  builds its wire form with `encode()` and parses incoming bytes with
  `feed()`.
- `vweb.client`: `HttpClient`, a blocking client that keeps its connection
  open between requests, plus `MultiPart` / `HttpPart` form bodies.
- `vweb.websocket_client`: `WebSocketClient`. It performs the upgrade
  handshake over an `HttpClient` connection and then exchanges frames.

## Installation

```
pip install .
```

## Making a request

```python
from vweb.client import HttpClient, HttpClientError
from vweb.httpparser import MethodType

with HttpClient(timeout=10.0) as client:
    try:
        response = client.send_request(
            MethodType.GET, "http://example.com/index.html",
            {"Accept": "text/html"}, b"", 10.0,
        )
    except HttpClientError as exc:
        print("failed:", exc)
    else:
        print(response.status_code, response.headers)
        print(client.take_body(0))
```

When the URL scheme is `https`, the connection is wrapped with TLS. The
client uses `client.ssl_context` if you set one, and otherwise
`ssl.create_default_context()`.

The connection is closed after the response in two cases: the request was
made with `request.set_keep_alive(False)`, or the response does not say
`Connection: keep-alive`.

A request can also be sent in steps:

1. `start_request(url)` sends the request line and headers.
2. `send_body(body)` sends the body.
3. `wait_response(timeout)` waits until the response is complete or some
   body has arrived. It returns the number of body bytes buffered.
4. `take_body(count)` removes buffered bytes. A `count` of 0 takes them all.

Connection events are reported through `on_connect(client, status)` and
`on_close(client, status)`.

## Building and parsing messages

```python
from vweb.httpparser import MethodType
from vweb.request import HttpRequest
from vweb.response import HttpResponse

request = HttpRequest()
request.set_url("http://example.com/upload?x=1")
request.method = MethodType.POST
request.set_content_type("text/plain")
request.body = b"hello"
wire = request.encode()   # request line, Host, Content-Length, sorted headers, body

response = HttpResponse()
response.feed(b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n\r\nhello")
print(response.parsed, response.status_code, response.take_body(0))
```

If a response has `Content-Encoding: gzip`, its body is decompressed as it
arrives. `HttpResponse.set_use_gzip(True)` makes `encode()` gzip-compress the
body. For chunked request bodies, `vweb.request.encode_chunk(data, last)`
encodes one chunk.

## Multipart bodies

```python
from vweb.client import HttpPart, MultiPart

form = MultiPart()
form.append(HttpPart(key="name", value="demo"))
form.append_final(HttpPart(key="file", value=b"data", content_type="text/plain"))
body = form.data
```

How the body is laid out:

- Each section begins with the `form.boundary` string itself on its own line.
- The body ends with `form.boundary + "--"`.
- `reset()` picks a new random boundary and drops all sections.

## WebSockets

```python
from vweb.websocket_client import WebSocketClient

ws = WebSocketClient(timeout=10.0)
ws.websocket_connect("ws://example.com:80/chat")
ws.send_text("hello", True, True)
ws.wait_frame(10.0)
print(ws.take_websocket_body(0))
print("round trip ms:", ws.ping())
ws.websocket_close()
```

A WebSocket URL must give its port explicitly, for example
`ws://host:80/path`. The handshake follows redirects with status 301, 302,
303, 307 or 308. Any final status other than 101 raises `HttpClientError`.

Frames can also be built and parsed without a connection:

```python
from vweb.websocket import WebSocketParser, WsFlags, build_frame

frame = build_frame(WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK, None, b"hi")
parser = WebSocketParser()
parser.on_frame_body = lambda p, chunk: print(chunk)   # payload arrives unmasked
parser.feed(frame)
```

## What the package does not do

- There is no HTTP or WebSocket server. Only client connections are made,
  although `HttpResponse.encode()` can produce a response's wire form.
- There is no command-line program.
- There is no asynchronous API. Every network call blocks until it finishes
  or its timeout runs out.
- `HttpClient.send_body` does not send chunked bodies.

## Running the tests

```
pip install .[test]
pytest
```