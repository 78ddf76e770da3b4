import logging
import socket
import struct
from threading import Thread

from dnslib import QTYPE, RCODE, DNSError, DNSRecord

from dohrelay.wire import error_reply

logger = logging.getLogger(__name__)

DNS_PORT = 53
UDP_PAYLOAD_SIZE = 512
RECV_SIZE = 65535
TCP_IDLE_TIMEOUT = 10
POLL_INTERVAL = 0.5


def max_udp_size(request: DNSRecord) -> int:
    for rr in request.ar:
        if rr.rtype == QTYPE.OPT:
            # the OPT record's class carries the advertised payload size
            return max(UDP_PAYLOAD_SIZE, rr.rclass)
    return UDP_PAYLOAD_SIZE


def truncate(reply: DNSRecord) -> DNSRecord:
    reply.rr = []
    reply.auth = []
    reply.ar = []
    reply.header.tc = 1
    return reply


def answer(handler, data: bytes, max_size=None):
    try:
        request = DNSRecord.parse(data)
    except DNSError as e:
        logger.warning("Unable to parse DNS packet (%d bytes): %s", len(data), e)
        return None
    try:
        reply = handler.handle(request)
        packed = reply.pack()
        if max_size is not None and len(packed) > max_size(request):
            packed = truncate(reply).pack()
    except Exception:
        logger.exception("Failed to answer DNS request id=%d", request.header.id)
        packed = error_reply(request, RCODE.SERVFAIL).pack()
    return packed


class UDPServer:
    def __init__(self, handler, host="0.0.0.0", port=DNS_PORT):
        self.handler = handler
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((host, port))
        self.sock.settimeout(POLL_INTERVAL)
        self.address = self.sock.getsockname()
        self._running = True

    def handle_datagram(self, data, addr):
        try:
            reply = answer(self.handler, data, max_size=max_udp_size)
            if reply is not None:
                self.sock.sendto(reply, addr)
        except OSError as e:
            logger.warning("Unable to answer %s:%d: %s", *addr, e)

    def serve_forever(self):
        logger.info("DNS server listening on udp %s:%d", *self.address)
        while self._running:
            try:
                data, addr = self.sock.recvfrom(RECV_SIZE)
            except socket.timeout:
                continue
            except ConnectionResetError:
                continue
            except OSError:
                if not self._running:
                    break
                raise
            Thread(target=self.handle_datagram, args=(data, addr), daemon=True).start()

    def start(self):
        thread = Thread(target=self.serve_forever, daemon=True)
        thread.start()
        return thread

    def shutdown(self):
        self._running = False
        self.sock.close()


def recv_exact(conn, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            return b""
        data += chunk
    return data


class TCPServer:
    def __init__(self, handler, host="0.0.0.0", port=DNS_PORT, idle_timeout=TCP_IDLE_TIMEOUT):
        self.handler = handler
        self.idle_timeout = idle_timeout
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind((host, port))
        self.sock.listen()
        self.sock.settimeout(POLL_INTERVAL)
        self.address = self.sock.getsockname()
        self._running = True

    def handle_connection(self, conn, addr):
        conn.settimeout(self.idle_timeout)
        try:
            with conn:
                while True:
                    header = recv_exact(conn, 2)
                    if not header:
                        return
                    (length,) = struct.unpack("!H", header)
                    data = recv_exact(conn, length)
                    if not data:
                        return
                    reply = answer(self.handler, data)
                    if reply is None:
                        return
                    conn.sendall(struct.pack("!H", len(reply)) + reply)
        except OSError as e:
            logger.debug("Connection from %s:%d closed: %s", *addr, e)

    def serve_forever(self):
        logger.info("DNS server listening on tcp %s:%d", *self.address)
        while self._running:
            try:
                conn, addr = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self._running:
                    break
                raise
            Thread(target=self.handle_connection, args=(conn, addr), daemon=True).start()

    def start(self):
        thread = Thread(target=self.serve_forever, daemon=True)
        thread.start()
        return thread

    def shutdown(self):
        self._running = False
        self.sock.close()
