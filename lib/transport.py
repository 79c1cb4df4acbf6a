"""
Yeelight UDP Transport

Thin non-blocking UDP wrappers used by device sessions and discovery.
Nothing here blocks: sends are fire-and-forget and received datagrams are
drained by poll(), which the owner calls once per tick. Replies are routed
either to a one-shot awaited-response slot or to the default message callback.
"""

import json
import logging
import socket
from dataclasses import dataclass
from typing import Callable, Optional

try:
    import udi_interface
    LOGGER = udi_interface.LOGGER
except ImportError:
    LOGGER = logging.getLogger(__name__)


DEVICE_PORT = 55444
RECV_BUFFER = 4096


def message_id(text: str) -> Optional[int]:
    """Get the 'id' field of a JSON reply, or None if it has none"""
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get('id'), int):
        return data['id']
    return None


@dataclass
class PendingResponse:
    """
    Awaited reply for one outstanding request.

    The handler is called with the raw reply and whether its id matched
    the awaited sequence number.
    """
    sequence: int
    handler: Callable[[str, bool], None]


class UdpTransport:
    """
    Connected UDP socket to a single Yeelight device.

    Callbacks:
        on_connect(): socket connected and ready to send
        on_message(text): reply received while nothing is awaited
        on_error(exc): socket failed; the transport is already closed
    """

    def __init__(self, ip: str, port: int = DEVICE_PORT,
                 on_message: Optional[Callable[[str], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 on_connect: Optional[Callable[[], None]] = None,
                 label: str = "Dev UDP"):
        self.ip = ip
        self.port = port
        self.on_message = on_message
        self.on_error = on_error
        self.on_connect = on_connect
        self._label = label
        self._sock: Optional[socket.socket] = None
        self._pending: Optional[PendingResponse] = None

    def __repr__(self):
        return f"<UdpTransport {self.ip}:{self.port} connected={self.is_connected}>"

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    @property
    def pending(self) -> Optional[PendingResponse]:
        """Currently awaited reply, if any"""
        return self._pending

    def connect(self) -> bool:
        """
        Bind an ephemeral port and connect to the device.

        Returns:
            True if the socket is connected
        """
        if self._sock is not None:
            return True

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setblocking(False)
            sock.bind(('', 0))
            sock.connect((self.ip, self.port))
        except OSError as e:
            LOGGER.error(f"[{self._label}] Bind/connect error for {self.ip}:{self.port} - {e}")
            self._fail(e)
            return False

        self._sock = sock
        LOGGER.debug(f"[{self._label}] Connected to {self.ip}:{self.port}")
        if self.on_connect:
            self.on_connect()
        return self.is_connected

    def expect(self, sequence: int, handler: Callable[[str, bool], None]):
        """Await a reply to `sequence`, replacing any previous awaiter"""
        self._pending = PendingResponse(sequence, handler)

    def clear_expectation(self):
        self._pending = None

    def send(self, text: str) -> bool:
        """
        Send one datagram.

        Returns:
            True if the datagram was handed to the network
        """
        if self._sock is None:
            return False

        try:
            self._sock.send(text.encode('utf-8'))
        except BlockingIOError:
            LOGGER.warning(f"[{self._label}] Send buffer full for {self.ip}, dropping packet")
            return False
        except OSError as e:
            LOGGER.error(f"[{self._label}] Send error for {self.ip} - {e}")
            self._fail(e)
            return False
        return True

    def poll(self) -> int:
        """
        Drain received datagrams and dispatch them.

        Returns:
            Number of datagrams dispatched
        """
        count = 0
        while self._sock is not None:
            try:
                data = self._sock.recv(RECV_BUFFER)
            except BlockingIOError:
                break
            except OSError as e:
                # ICMP port unreachable surfaces here on a connected socket
                LOGGER.error(f"[{self._label}] Receive error for {self.ip} - {e}")
                self._fail(e)
                break

            count += 1
            self._dispatch(data.decode('utf-8', errors='replace'))
        return count

    def _dispatch(self, text: str):
        pending = self._pending
        if pending is not None:
            self._pending = None
            pending.handler(text, message_id(text) == pending.sequence)
        elif self.on_message:
            self.on_message(text)

    def close(self):
        """Close the socket. Any awaited reply is abandoned."""
        self._pending = None
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                LOGGER.debug(f"[{self._label}] Close error for {self.ip} - {e}")

    def _fail(self, exc: Exception):
        self.close()
        if self.on_error:
            self.on_error(exc)


class BroadcastSocket:
    """
    Unconnected UDP socket for SSDP-style discovery.

    Responses from any device are passed to on_response(ip, text).
    """

    def __init__(self, address: str, port: int,
                 on_response: Optional[Callable[[str, str], None]] = None):
        self.address = address
        self.port = port
        self.on_response = on_response
        self._sock: Optional[socket.socket] = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self):
        """Open the socket. Raises OSError on failure."""
        if self._sock is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            sock.setblocking(False)
            sock.bind(('', 0))
        except OSError:
            sock.close()
            raise
        self._sock = sock

    def broadcast(self, text: str):
        """Send a discovery request. Raises OSError on failure."""
        self.open()
        self._sock.sendto(text.encode('utf-8'), (self.address, self.port))

    def poll(self) -> int:
        """Drain responses; returns how many were dispatched"""
        count = 0
        while self._sock is not None:
            try:
                data, addr = self._sock.recvfrom(RECV_BUFFER)
            except BlockingIOError:
                break
            except OSError as e:
                LOGGER.warning(f"[Discovery] Receive error - {e}")
                self.close()
                break

            count += 1
            if self.on_response:
                self.on_response(addr[0], data.decode('utf-8', errors='replace'))
        return count

    def close(self):
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                LOGGER.debug(f"[Discovery] Close error - {e}")
