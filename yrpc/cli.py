"""Command-line entry points: the echo fatigue test and the example client/server."""

from __future__ import annotations

import argparse
import threading
import time
from collections.abc import Sequence

from .client import RpcClient
from .codec import CodecError, FieldType, deserialize
from .errors import ReplyType, RpcError
from .eventthread import EventThread
from .protocol import REPLY_TYPE_FIELD
from .server import RpcServer

INT32_MAX = 2**31 - 1
INT64_MAX = 2**63 - 1

EXAMPLE_PORT = 10031
MONITOR_INTERVAL_MS = 1000

ECHO_REQUEST = (FieldType.STRING,)
ECHO_REPLY = (REPLY_TYPE_FIELD, FieldType.STRING)
TEST1_REQUEST = (FieldType.INT32, FieldType.INT64, FieldType.INT32, FieldType.STRING)
TEST1_REPLY = (REPLY_TYPE_FIELD, FieldType.STRING)


class _UsageError(Exception):
    """Raised by the argument parser instead of exiting."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _UsageError(message)


def _run_for(io_thread: EventThread, duration: float | None) -> None:
    """Keep the process alive for ``duration`` seconds (forever when None)."""
    try:
        if duration is None:
            io_thread.join()
        else:
            time.sleep(max(duration, 0.0))
    except KeyboardInterrupt:
        pass


def _shutdown(io_thread: EventThread) -> None:
    io_thread.stop()
    io_thread.join(5.0)


def _print_monitor(debug_info: str) -> None:
    print("Monitor")
    print(debug_info, flush=True)


# --------------------------------------------------------------------------- echo


def _echo_parser(prog: str) -> _Parser:
    parser = _Parser(prog=prog, description="Echo fatigue test.")
    parser.add_argument("ip")
    parser.add_argument("port", type=int)
    return parser


def echo_server_main(argv: Sequence[str] | None = None) -> int:
    """Serve an ``echo`` method that returns the string it was sent."""
    parser = _echo_parser("yrpc-echo-server")
    parser.add_argument("--duration", type=float, default=1200.0,
                        help="seconds to run before exiting")
    try:
        args = parser.parse_args(argv)
    except _UsageError:
        print(f"Usage: {parser.prog} <ip> <port>")
        return -1

    io_thread = EventThread()
    server = RpcServer(io_thread)
    try:
        server.init(args.ip, args.port, 3000)
    except RpcError as exc:
        print(f"Init failed: {exc}")
        io_thread.stop()
        return -1

    def echo(srv: RpcServer, conn_id: int, seq: int, body: bytes) -> None:
        try:
            (text,) = deserialize(body, ECHO_REQUEST)
        except CodecError as exc:
            print(f"Deserialize failed: {exc}")
            return
        srv.do_reply(conn_id, seq, (ReplyType.SUCCESS, text), ECHO_REPLY)

    try:
        server.register_method("echo", echo)
    except RpcError as exc:
        print(f"RegisterMethod failed: {exc}")
        io_thread.stop()
        return -1

    io_thread.call_every(MONITOR_INTERVAL_MS, lambda: _print_monitor(server.debug_info()))
    io_thread.start()
    _run_for(io_thread, args.duration)
    _shutdown(io_thread)
    return 0


def echo_client_main(argv: Sequence[str] | None = None) -> int:
    """Flood an echo server with calls and report the bytes received back."""
    parser = _echo_parser("yrpc-echo-client")
    parser.add_argument("--rounds", type=int, default=None,
                        help="number of bursts to send (default: run forever)")
    parser.add_argument("--calls", type=int, default=10000, help="calls per burst")
    parser.add_argument("--interval", type=int, default=200, help="ms between bursts")
    parser.add_argument("--timeout", type=int, default=1000, help="ms to wait for each reply")
    try:
        args = parser.parse_args(argv)
    except _UsageError:
        print(f"Usage: {parser.prog} <ip> <port>")
        return -1

    io_thread = EventThread()
    client = RpcClient(io_thread)
    try:
        client.init(args.ip, args.port, 3000, 4000)
    except RpcError as exc:
        print(f"Init failed: {exc}")
        io_thread.stop()
        return -1

    io_thread.call_every(MONITOR_INTERVAL_MS, lambda: _print_monitor(client.debug_info()))
    io_thread.start()

    deadline = time.monotonic() + 1.0
    while not client.is_connected() and time.monotonic() < deadline:
        time.sleep(0.05)

    settled = threading.Condition()
    received = 0
    outstanding = 0

    def on_reply(err: RpcError | None, body: bytes) -> None:
        nonlocal received, outstanding
        with settled:
            received += len(body)
            outstanding -= 1
            settled.notify_all()

    rounds = 0
    try:
        while args.rounds is None or rounds < args.rounds:
            for _ in range(args.calls):
                with settled:
                    outstanding += 1
                try:
                    client.remote_call("echo", ("hello world",), args.timeout, on_reply,
                                       ECHO_REQUEST)
                except RpcError as exc:
                    with settled:
                        outstanding -= 1
                    print(f"RemoteCall failed: {exc}")
            rounds += 1
            time.sleep(args.interval / 1000.0)
    except KeyboardInterrupt:
        pass

    wait_limit = 2 * args.timeout / 1000.0 + 1.0
    with settled:
        settled.wait_for(lambda: outstanding <= 0, timeout=wait_limit)
        total = received

    client.close()
    _shutdown(io_thread)
    print(f"Received: {total} bytes", flush=True)
    return 0


# ------------------------------------------------------------------------ example


class _ExampleServer(RpcServer):
    def on_error(self, err: RpcError) -> None:
        print(f"OnError: {err}")

    def on_timeout(self, conn_id: int) -> None:
        super().on_timeout(conn_id)
        print("OnTimeout: ")


class _ExampleClient(RpcClient):
    def on_error(self, err: RpcError) -> None:
        print(f"OnError: {err}")

    def on_timeout(self, conn_id: int) -> None:
        super().on_timeout(conn_id)
        print("OnTimeout: ")


def _test_method(server: RpcServer, conn_id: int, seq: int, body: bytes) -> None:
    a, b, c, d = deserialize(body, TEST1_REQUEST)
    print(f"Tuple contents: {a}, {b}, {c}, {d}", flush=True)
    server.do_reply(conn_id, seq, (ReplyType.SUCCESS, "nothing happened!"), TEST1_REPLY)


def _example_server(args: argparse.Namespace) -> int:
    io_thread = EventThread()
    server = _ExampleServer(io_thread)
    try:
        server.init(args.ip, args.port, 10000)
    except RpcError as exc:
        print(f"Init failed: {exc}")
        io_thread.stop()
        return -1
    try:
        server.register_method("test_method", _test_method)
    except RpcError as exc:
        print(f"RegisterMethod failed: {exc}")
        io_thread.stop()
        return -1

    io_thread.start()
    _run_for(io_thread, args.duration)
    _shutdown(io_thread)
    return 0


def _on_example_reply(err: RpcError | None, body: bytes) -> None:
    if err is not None:
        print(f"RemoteCall failed: {err}", flush=True)
        return
    try:
        _, text = deserialize(body, TEST1_REPLY)
    except CodecError as exc:
        print(f"Deserialize failed: {exc}", flush=True)
        return
    print(f"Received: {text}", flush=True)


def _example_calls(client: RpcClient) -> None:
    print("Connected to server!", flush=True)

    def call(label: int, name: str, values: tuple, schema: tuple | None) -> None:
        try:
            client.remote_call(name, values, 1000, _on_example_reply, schema)
        except RpcError as exc:
            print(f"RemoteCall failed {label}: {exc}", flush=True)

    # Arguments matching the method's request layout.
    call(1, "test_method", (INT32_MAX, INT64_MAX, 3, "helloworld"), TEST1_REQUEST)
    # An extra argument: the server rejects the request.
    call(2, "test_method", (INT32_MAX, INT64_MAX, 3, 112, "helloworld"), None)
    print("-- do call with tuple --", flush=True)
    call(4, "test_method", (100, 10, 3, "helloworld"), TEST1_REQUEST)
    call(3, "bad call", ("",), None)


def _example_client(args: argparse.Namespace) -> int:
    io_thread = EventThread()
    client = _ExampleClient(io_thread)
    try:
        client.init(args.ip, args.port, 1000, 10000, _example_calls)
    except RpcError as exc:
        print(f"Init failed: {exc}")
        io_thread.stop()
        return -1

    io_thread.start()
    _run_for(io_thread, args.duration)
    client.close()
    _shutdown(io_thread)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the example server or client."""
    parser = _Parser(prog="yrpc", description="Example RPC server and client.")
    commands = parser.add_subparsers(dest="command", required=True)

    server_cmd = commands.add_parser("server", help="serve test_method")
    server_cmd.add_argument("--ip", default="")
    server_cmd.add_argument("--port", type=int, default=EXAMPLE_PORT)
    server_cmd.add_argument("--duration", type=float, default=None,
                            help="seconds to run (default: forever)")

    client_cmd = commands.add_parser("client", help="call test_method")
    client_cmd.add_argument("--ip", default="127.0.0.1")
    client_cmd.add_argument("--port", type=int, default=EXAMPLE_PORT)
    client_cmd.add_argument("--duration", type=float, default=None,
                            help="seconds to run (default: forever)")

    try:
        args = parser.parse_args(argv)
    except _UsageError as exc:
        print(parser.format_usage().rstrip())
        print(f"error: {exc}")
        return -1

    if args.command == "server":
        return _example_server(args)
    return _example_client(args)