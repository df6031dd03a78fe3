import errno
import socket
import time

import pytest

from mtcomm.tcp import ConnTCP, HandleTCP, decode_header, encode_header


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    handle = HandleTCP(None, a)
    yield handle, b
    for s in (a, b):
        try:
            s.close()
        except OSError:
            pass


def pump(conn, events, count, deadline=5.0):
    end = time.monotonic() + deadline
    while len(events) < count and time.monotonic() < end:
        conn.update()
    return events


def free_port():
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_header_wire_format():
    assert encode_header(5) == b"\x00" * 7 + b"\x05"
    assert encode_header(0) == b"\x00" * 8


def test_header_round_trip():
    for size in (0, 1, 1 << 22, 2**63):
        assert decode_header(encode_header(size)) == size


def test_decode_header_rejects_short_input():
    with pytest.raises(ValueError):
        decode_header(b"\x00\x01")


def test_send_writes_header_and_payload(pair):
    handle, peer = pair
    assert handle.send(b"ping") == 4
    assert peer.recv(64) == encode_header(4) + b"ping"


def test_probe_then_receive(pair):
    handle, peer = pair
    peer.sendall(encode_header(5) + b"hello")
    assert handle.probe(True) == 5
    assert handle.probe(True) == 5
    assert handle.receive(10) == b"hello"
    assert handle.probed is None


def test_receive_without_probe(pair):
    handle, peer = pair
    peer.sendall(encode_header(3) + b"abc" + encode_header(2) + b"de")
    assert handle.receive(3) == b"abc"
    assert handle.receive(2) == b"de"


def test_receive_buffer_too_small(pair):
    handle, peer = pair
    peer.sendall(encode_header(6) + b"abcdef")
    with pytest.raises(OSError) as info:
        handle.receive(2)
    assert info.value.errno == errno.EMSGSIZE
    assert handle.receive(6) == b"abcdef"


def test_nonblocking_probe_without_data(pair):
    handle, _ = pair
    with pytest.raises(BlockingIOError):
        handle.probe(False)


def test_nonblocking_probe_partial_header_not_consumed(pair):
    handle, peer = pair
    data = encode_header(2)
    peer.sendall(data[:3])
    with pytest.raises(BlockingIOError):
        handle.probe(False)
    peer.sendall(data[3:] + b"xy")
    assert handle.probe(False) == 2
    assert handle.receive(2) == b"xy"


def test_truncated_header_resets(pair):
    handle, peer = pair
    peer.sendall(b"\x00\x00\x00")
    peer.close()
    with pytest.raises(ConnectionResetError):
        handle.probe(True)


def test_eos_marker(pair):
    handle, peer = pair
    other = HandleTCP(None, peer)
    other.send_eos()
    assert handle.probe(True) == 0
    assert handle.receive(10) == b""
    assert handle.probed is None


def test_peer_close_is_end_of_stream(pair):
    handle, peer = pair
    peer.close()
    assert handle.probe(False) == 0


def test_peek(pair):
    handle, peer = pair
    assert handle.peek() is False
    peer.sendall(encode_header(1)[:4])
    assert handle.peek() is False
    peer.sendall(encode_header(1)[4:] + b"z")
    assert handle.peek() is True
    assert handle.receive(1) == b"z"


def test_payload_cut_short(pair):
    handle, peer = pair
    peer.sendall(encode_header(10) + b"abc")
    peer.close()
    with pytest.raises(OSError) as info:
        handle.receive(10)
    assert info.value.errno == errno.EPROTO


def test_payload_missing(pair):
    handle, peer = pair
    peer.sendall(encode_header(10))
    peer.close()
    with pytest.raises(ConnectionResetError):
        handle.receive(10)


def test_closed_handle_send_raises(pair):
    handle, _ = pair
    handle.sock.close()
    handle.sock = None
    with pytest.raises(OSError) as info:
        handle.send(b"x")
    assert info.value.errno == errno.EBADF


def test_listen_rejects_malformed_address():
    conn = ConnTCP()
    conn.init("server")
    with pytest.raises(ValueError):
        conn.listen("localhost")
    with pytest.raises(ValueError):
        conn.listen("localhost:port")


def test_connect_refused():
    conn = ConnTCP()
    conn.init("client")
    with pytest.raises(ConnectionError):
        conn.connect(f"127.0.0.1:{free_port()}", 2, 10)


def test_update_without_listening_yields_nothing():
    conn = ConnTCP()
    conn.init("idle")
    events = []
    conn.add_in_queue = lambda new, h: events.append((new, h))
    conn.update()
    assert events == []


def test_close_read_and_write_forgets_handle():
    server = ConnTCP()
    server.init("server")
    server.listen("127.0.0.1:0")
    events = []
    server.add_in_queue = lambda new, h: events.append((new, h))
    client = ConnTCP()
    client.init("client")
    chandle = client.connect(f"127.0.0.1:{server.port}")
    pump(server, events, 1)
    _, shandle = events[0]

    shandle.yield_control()
    shandle.close(True, True)
    assert shandle not in server.connections
    assert server.is_set(shandle) is False
    assert shandle.sock is None
    assert chandle.probe(True) == 0

    shandle.yield_control()
    assert server.is_set(shandle) is False
    server.end()
    client.end()