"""Shared fakes for the Yeelight library tests"""

import json

import pytest

from lib.ip_cache import MemorySettingsStore
from lib.transport import message_id


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport:
    """In-memory stand-in for UdpTransport"""

    def __init__(self, ip, port=55444, on_message=None, on_error=None,
                 on_connect=None, label="Dev UDP", connect_ok=True):
        self.ip = ip
        self.port = port
        self.on_message = on_message
        self.on_error = on_error
        self.on_connect = on_connect
        self.label = label
        self.connect_ok = connect_ok
        self.connected = False
        self.closed = False
        self.sent = []
        self.inbound = []
        self.pending = None

    @property
    def is_connected(self):
        return self.connected

    def connect(self):
        self.connected = self.connect_ok
        return self.connected

    def expect(self, sequence, handler):
        self.pending = (sequence, handler)

    def clear_expectation(self):
        self.pending = None

    def send(self, text):
        if not self.connected:
            return False
        self.sent.append(text)
        return True

    def sent_json(self):
        return [json.loads(text) for text in self.sent]

    def methods(self):
        return [packet['method'] for packet in self.sent_json()]

    def queue(self, reply):
        self.inbound.append(reply if isinstance(reply, str) else json.dumps(reply))

    def poll(self):
        count = 0
        while self.inbound and self.connected:
            text = self.inbound.pop(0)
            count += 1
            if self.pending is not None:
                sequence, handler = self.pending
                self.pending = None
                handler(text, message_id(text) == sequence)
            elif self.on_message:
                self.on_message(text)
        return count

    def fail(self, exc=None):
        self.close()
        if self.on_error:
            self.on_error(exc or OSError("unreachable"))

    def close(self):
        self.pending = None
        self.connected = False
        self.closed = True


class TransportFactory:
    """Builds FakeTransports and remembers them"""

    def __init__(self, connect_ok=True):
        self.connect_ok = connect_ok
        self.created = []

    def __call__(self, ip, port=55444, **kwargs):
        transport = FakeTransport(ip, port, connect_ok=self.connect_ok, **kwargs)
        self.created.append(transport)
        return transport

    @property
    def last(self):
        return self.created[-1]


class FakeBroadcastSocket:
    def __init__(self):
        self.on_response = None
        self.sent = []
        self.inbound = []
        self.closed = False
        self.fail_with = None

    def broadcast(self, text):
        if self.fail_with:
            raise self.fail_with
        self.sent.append(text)

    def deliver(self, ip, text):
        self.inbound.append((ip, text))

    def poll(self):
        count = 0
        while self.inbound:
            ip, text = self.inbound.pop(0)
            count += 1
            if self.on_response:
                self.on_response(ip, text)
        return count

    def close(self):
        self.closed = True


def token_reply(sequence=1, token="0123456789abcdef0123456789abcdef"):
    return {"id": sequence, "method": "udp_sess_new", "params": {"token": token}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transports():
    return TransportFactory()


@pytest.fixture
def store():
    return MemorySettingsStore()


@pytest.fixture
def broadcast():
    return FakeBroadcastSocket()
