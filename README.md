# yrpc

yrpc is a small remote-call framework over long-lived TCP connections.
A server registers named methods; a client calls them by name, with
arguments packed into a compact typed binary format, and gets the outcome
through a callback. Calls with a callback carry a timeout; calls without
one are one-way notifications. It has no dependencies beyond the
standard library.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- **`yrpc.eventthread.EventThread`** runs an asyncio event loop on a
  background thread. Hand it to a server and/or client, then `start()` it;
  `stop()` and `join(timeout)` shut it down. It is also a context manager
  (start on entry, stop and join on exit). `call_soon(fn, *args)`,
  `submit(coro)` and `call_every(interval_ms, fn)` schedule work on the loop.

- **`yrpc.server.RpcServer`** listens with
  `init(ip, port, connection_timeout=10000)`; connections idle for longer
  than `connection_timeout` milliseconds are closed (0 means never).
  Listening failures raise `RpcError`. Methods are added with
  `register_method(name, method)` and removed with `unregister_method(name)`;
  registering a name twice, or removing an unknown one, raises `RpcError`.
  A method is called as `method(server, conn_id, seq, body)`, where `body`
  holds the encoded arguments, and answers with
  `server.do_reply(conn_id, seq, values, schema)` or, for an already
  encoded body, `do_reply_raw(conn_id, seq, body)`. If the method name is
  unknown or the method raises, the client receives a failure reply carrying
  the error's message. `close(conn_id)` drops a connection and
  `debug_info()` returns a short statistics string. Subclasses may override
  `on_error`, `on_timeout`, `on_send` and `on_accept`; by default errors are
  printed to standard error.

- **`yrpc.client.RpcClient`** connects with
  `init(ip, port, connect_timeout=10000, connection_timeout=0, on_connect=None)`
  (timeouts in milliseconds, 0 meaning none; `ip` must be an IP address).
  `on_connect(client)` runs on the I/O thread once connected.
  `remote_call(method_name, args, timeout=0, callback=None, schema=None)`
  sends a call and returns its sequence number. A callback is invoked once
  as `callback(error, body)`: `error` is `None` on success, otherwise an
  `RpcError` whose `kind` is `ErrorKind.CLIENT_TIMEOUT`,
  `ErrorKind.CLIENT_CLOSE` or `ErrorKind.CLIENT_FAILED` (a failure reply
  from the server). Calling while not connected raises `RpcError`.
  `is_connected()`, `reconnect()`, `close()` (which fails every pending
  call) and `debug_info()` round it out; `on_error`, `on_timeout` and
  `on_send` may be overridden.

- **`yrpc.codec`** encodes typed field sequences. Each field is a tag byte,
  a little-endian 32-bit length and the payload. A schema is a sequence of
  `FieldType` members (`INT32`, `UINT32`, `INT64`, `UINT64`, `STRING`,
  `BYTES`). `serialize(values, schema=None)` infers the types when no
  schema is given (ints take the smallest of `INT32`, `INT64`, `UINT64`
  that fits). `deserialize(data, schema=None)` returns a tuple and ignores
  fields beyond the schema; `deserialize_prefix` also returns the number of
  bytes consumed. Bad values or malformed input raise `CodecError`.

- **`yrpc.protocol`** frames messages: a 20-byte `ProtocolHead`
  (method hash, call sequence, total frame length) followed by the body.
  Frames of 2 MiB or more are rejected, and the server closes a connection
  that sends one. `method_hash(name)` gives the 64-bit FNV-1a hash used on
  the wire; `REPLY_TYPE_FIELD` is the wire type of a reply's leading field.

- **`yrpc.errors`** holds `RpcError` (with `message` and `kind`),
  `ErrorKind` and `ReplyType` (`SUCCESS`, `FAILED`, `TIMEOUT`).

Every reply starts with a reply-type field followed by the method's own
result fields, so read successful replies with a schema beginning with
`REPLY_TYPE_FIELD`.

## Example

```python
import threading

from yrpc.client import RpcClient
from yrpc.codec import FieldType, deserialize
from yrpc.errors import ReplyType
from yrpc.eventthread import EventThread
from yrpc.protocol import REPLY_TYPE_FIELD
from yrpc.server import RpcServer

ADD_REQUEST = (FieldType.INT32, FieldType.INT32)
ADD_REPLY = (REPLY_TYPE_FIELD, FieldType.INT32)

def add(server, conn_id, seq, body):
    a, b = deserialize(body, ADD_REQUEST)
    server.do_reply(conn_id, seq, (ReplyType.SUCCESS, a + b), ADD_REPLY)

io_thread = EventThread()
server = RpcServer(io_thread)
client = RpcClient(io_thread)

server.register_method("add", add)
server.init("127.0.0.1", 8910, 10000)

connected = threading.Event()
client.init("127.0.0.1", 8910, 1000, 10000, lambda c: connected.set())
io_thread.start()
connected.wait(5)

done = threading.Event()

def on_reply(error, body):
    if error is None:
        print(deserialize(body, ADD_REPLY))   # (0, 300)
    else:
        print("failed:", error, error.kind.name)
    done.set()

client.remote_call("add", (100, 200), 10000, on_reply, ADD_REQUEST)
done.wait(5)

client.close()
io_thread.stop()
io_thread.join(5)
```

## Command-line tools

An echo server and a load-generating echo client, for soak testing:

```
yrpc-echo-server <ip> <port> [--duration SECONDS]
yrpc-echo-client <ip> <port> [--rounds N] [--calls N] [--interval MS] [--timeout MS]
```

Both print debug statistics once a second. The server runs for 1200
seconds by default. The client sends a burst of `--calls` echo calls
(default 10000) every `--interval` ms (default 200), forever unless
`--rounds` is given, and on exit prints the number of bytes received back.

The `yrpc` command runs a demonstration server and client on port 10031:

```
yrpc server [--ip IP] [--port PORT] [--duration SECONDS]
yrpc client [--ip IP] [--port PORT] [--duration SECONDS]
```

## Limitations

- The client connects to IP addresses only, not host names.
- There is no encryption, authentication or automatic reconnection;
  call `reconnect()` yourself after a connection is lost.