import socket
import threading
import time

from yrpc.cli import echo_client_main, echo_server_main, main
from yrpc.codec import FieldType, serialize
from yrpc.errors import ReplyType
from yrpc.protocol import REPLY_TYPE_FIELD


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_listening(port, limit=5.0):
    deadline = time.monotonic() + limit
    while time.monotonic() < deadline:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.2):
                return True
        except OSError:
            time.sleep(0.05)
    return False


def _in_thread(fn, argv):
    result = {}

    def run():
        result["code"] = fn(argv)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, result


def test_echo_server_usage_without_port(capsys):
    assert echo_server_main(["127.0.0.1"]) == -1
    assert "Usage: yrpc-echo-server <ip> <port>" in capsys.readouterr().out


def test_echo_client_usage_without_arguments(capsys):
    assert echo_client_main([]) == -1
    assert "Usage: yrpc-echo-client <ip> <port>" in capsys.readouterr().out


def test_echo_client_bad_port_is_usage_error(capsys):
    assert echo_client_main(["127.0.0.1", "notaport"]) == -1
    assert "Usage:" in capsys.readouterr().out


def test_echo_server_init_fails_on_busy_port(capsys):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen()
        port = busy.getsockname()[1]
        code = echo_server_main(["127.0.0.1", str(port), "--duration", "0"])
    assert code == -1
    assert "Init failed:" in capsys.readouterr().out


def test_echo_client_without_server_reports_failures(capsys):
    port = _free_port()
    code = echo_client_main(
        ["127.0.0.1", str(port), "--rounds", "1", "--calls", "2", "--interval", "0"]
    )
    out = capsys.readouterr().out
    assert code == 0
    assert out.count("RemoteCall failed: client not connected!") == 2
    assert "Received: 0 bytes" in out


def test_echo_round_trip(capsys):
    port = _free_port()
    server_thread, server_result = _in_thread(
        echo_server_main, ["127.0.0.1", str(port), "--duration", "3"]
    )
    assert _wait_listening(port)

    calls = 5
    code = echo_client_main(
        ["127.0.0.1", str(port), "--rounds", "1", "--calls", str(calls), "--interval", "0"]
    )
    server_thread.join(10)
    out = capsys.readouterr().out

    reply_size = len(
        serialize((ReplyType.SUCCESS, "hello world"), (REPLY_TYPE_FIELD, FieldType.STRING))
    )
    assert code == 0
    assert server_result["code"] == 0
    assert f"Received: {calls * reply_size} bytes" in out
    assert "RemoteCall failed" not in out


def test_main_requires_subcommand(capsys):
    assert main([]) == -1
    assert "usage:" in capsys.readouterr().out


def test_main_client_rejects_bad_address(capsys):
    assert main(["client", "--ip", "not-an-ip", "--duration", "0"]) == -1
    assert "Init failed:" in capsys.readouterr().out


def test_main_example_client_and_server(capsys):
    port = _free_port()
    server_thread, server_result = _in_thread(
        main, ["server", "--ip", "127.0.0.1", "--port", str(port), "--duration", "3"]
    )
    assert _wait_listening(port)

    code = main(["client", "--port", str(port), "--duration", "1.5"])
    server_thread.join(10)
    out = capsys.readouterr().out

    assert code == 0
    assert server_result["code"] == 0
    assert "Connected to server!" in out
    assert "-- do call with tuple --" in out
    assert "Tuple contents: 2147483647, 9223372036854775807, 3, helloworld" in out
    assert "Tuple contents: 100, 10, 3, helloworld" in out
    assert out.count("Received: nothing happened!") == 2
    assert "RemoteCall failed: [yrpc] [RpcServer] method not found!" in out
    assert out.count("RemoteCall failed: ") == 2