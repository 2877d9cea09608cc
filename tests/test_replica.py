import io
import socket
import threading

import pytest

from minirediskv.commands import PARSING_FAILED
from minirediskv.replica import ReplicaLink, parse_master_address
from minirediskv.resp import encode_array
from minirediskv.store import EMPTY_RDB, MASTER_REPLID, Config, Store, now_ms

PING = encode_array(["PING"])
GETACK = b"*3\r\n$8\r\nREPLCONF\r\n$6\r\nGETACK\r\n$1\r\n*\r\n"


@pytest.fixture
def link(tmp_path):
    config = Config(port=6380, directory=str(tmp_path), replicaof="localhost 6379")
    return ReplicaLink(config, Store())


def _master_stream():
    return (
        b"+PONG\r\n+OK\r\n+OK\r\n+FULLRESYNC "
        + MASTER_REPLID.encode()
        + b" 0\r\n$"
        + str(len(EMPTY_RDB)).encode()
        + b"\r\n"
        + EMPTY_RDB
    )


def test_parse_master_address():
    assert parse_master_address("localhost 6380") == ("localhost", 6380)


@pytest.mark.parametrize("text", ["localhost", "", "localhost port"])
def test_parse_master_address_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_master_address(text)


def test_handshake_sends_commands_and_returns_rdb(link):
    reader = io.BytesIO(_master_stream())
    writer = io.BytesIO()
    assert link.handshake(reader, writer) == EMPTY_RDB
    assert writer.getvalue() == (
        b"*1\r\n$4\r\nPING\r\n"
        b"*3\r\n$8\r\nREPLCONF\r\n$14\r\nlistening-port\r\n$4\r\n6380\r\n"
        b"*3\r\n$8\r\nREPLCONF\r\n$4\r\ncapa\r\n$6\r\npsync2\r\n"
        b"*3\r\n$5\r\nPSYNC\r\n$1\r\n?\r\n$2\r\n-1\r\n"
    )


def test_handshake_rejects_bad_rdb_header(link):
    reader = io.BytesIO(b"+PONG\r\n+OK\r\n+OK\r\n+FULLRESYNC x 0\r\n+oops\r\n")
    with pytest.raises(ValueError):
        link.handshake(reader, io.BytesIO())


def test_handshake_fails_when_master_closes(link):
    with pytest.raises(ConnectionError):
        link.handshake(io.BytesIO(b"+PONG\r\n"), io.BytesIO())


def test_handshake_fails_on_truncated_rdb(link):
    stream = _master_stream()[:-5]
    with pytest.raises(ConnectionError):
        link.handshake(io.BytesIO(stream), io.BytesIO())


def test_ping_counts_its_size(link):
    assert link.process(PING) is None
    assert link.offset == len(PING)


def test_set_is_applied_and_counted(link):
    message = encode_array(["SET", "foo", "123"])
    assert link.process(message) is None
    assert link.store.get("foo") == "123"
    assert link.offset == len(message)


def test_several_sets_in_one_message(link):
    first = encode_array(["SET", "foo", "1"])
    second = encode_array(["SET", "bar", "hello world"])
    link.process(first + second)
    assert link.store.get("foo") == "1"
    assert link.store.get("bar") == "hello world"
    assert link.offset == len(first) + len(second)


def test_set_with_px_expires(link):
    link.process(encode_array(["SET", "foo", "bar", "px", "100"]))
    assert link.store.get("foo") == "bar"
    assert link.store.get("foo", now=now_ms() + 10_000) is None


def test_set_with_bad_px_is_ignored(link):
    link.process(encode_array(["SET", "foo", "bar", "px", "soon"]))
    assert link.store.get("foo") is None


def test_getack_reports_offset_then_counts_itself(link):
    assert link.process(GETACK) == encode_array(["REPLCONF", "ACK", "0"])
    assert link.offset == len(GETACK)


def test_getack_after_ping_reports_ping_size(link):
    link.process(PING)
    reply = link.process(GETACK)
    assert reply == encode_array(["REPLCONF", "ACK", str(len(PING))])
    assert link.offset == len(PING) + len(GETACK)


def test_unparsable_message_gets_error(link):
    assert link.process(b"garbage") == PARSING_FAILED
    assert link.offset == 0


def test_run_follows_master_stream(tmp_path):
    listener = socket.create_server(("127.0.0.1", 0))
    host, port = listener.getsockname()[:2]
    set_message = encode_array(["SET", "foo", "bar"])
    received = []

    def master():
        conn, _ = listener.accept()
        with conn:
            for reply in (b"+PONG\r\n", b"+OK\r\n", b"+OK\r\n"):
                received.append(conn.recv(1024))
                conn.sendall(reply)
            received.append(conn.recv(1024))
            conn.sendall(_master_stream()[len(b"+PONG\r\n+OK\r\n+OK\r\n"):])
            conn.sendall(set_message)

    master_thread = threading.Thread(target=master, daemon=True)
    master_thread.start()

    config = Config(port=6380, directory=str(tmp_path), replicaof=f"{host} {port}")
    replica = ReplicaLink(config, Store())
    runner = threading.Thread(target=replica.run, daemon=True)
    runner.start()
    runner.join(10)
    master_thread.join(10)
    listener.close()

    assert not runner.is_alive()
    assert received[0] == PING
    assert received[3] == encode_array(["PSYNC", "?", "-1"])
    assert replica.store.get("foo") == "bar"
    assert replica.offset == len(set_message)


def test_run_with_invalid_address_returns(tmp_path):
    config = Config(port=6380, directory=str(tmp_path), replicaof="nowhere")
    replica = ReplicaLink(config, Store())
    replica.run()
    assert replica.offset == 0
    assert replica.store.keys() == []