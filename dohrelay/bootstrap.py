import logging
import socket
import threading
import time

from dnslib import QTYPE, RCODE, DNSError, DNSRecord

from dohrelay.cache import CacheEntry
from dohrelay.errors import BootstrapResolutionError
from dohrelay.models import DEFAULT_BOOTSTRAP_NAMESERVERS, split_host_port

logger = logging.getLogger(__name__)

RECV_SIZE = 4096


def udp_exchange(query: DNSRecord, nameserver, timeout: float) -> DNSRecord:
    """Send one query over UDP and wait for the matching response."""
    deadline = time.monotonic() + timeout
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(nameserver)
        s.send(query.pack())
        while True:
            # stray datagrams must not extend the attempt past its deadline
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout(f"no matching response from {nameserver[0]}:{nameserver[1]}")
            s.settimeout(remaining)
            response = DNSRecord.parse(s.recv(RECV_SIZE))
            if response.header.id == query.header.id:
                return response
            logger.debug("Ignoring response with id %d from %s:%d", response.header.id, *nameserver)
    finally:
        s.close()


class BootstrapResolver:
    """Resolves one hostname to an IPv4 address through fixed nameservers.

    Used only for the DoH endpoint's own host, so that reaching the endpoint
    never depends on the system resolver. The answer is cached for its TTL.
    """

    def __init__(self, hostname: str, nameservers=None, timeout: float = 3.0,
                 exchange=udp_exchange, clock=time.monotonic):
        self.hostname = hostname
        if nameservers is None:
            nameservers = DEFAULT_BOOTSTRAP_NAMESERVERS
        self.nameservers = [split_host_port(ns) if isinstance(ns, str) else tuple(ns) for ns in nameservers]
        if not self.nameservers:
            raise ValueError("at least one bootstrap nameserver is required")
        self.timeout = timeout
        self._exchange = exchange
        self._clock = clock
        self._entry = None
        self._lock = threading.Lock()

    @property
    def cached(self):
        return self._entry

    def resolve(self) -> str:
        with self._lock:
            entry = self._entry
            if entry is not None and entry.is_valid(self._clock()):
                return entry.ip
            return self._lookup()

    def _lookup(self) -> str:
        query = DNSRecord.question(self.hostname, "A")
        for nameserver in self.nameservers:
            try:
                response = self._exchange(query, nameserver, self.timeout)
            except (OSError, DNSError) as e:
                logger.warning("Bootstrap nameserver %s:%d failed for %s: %s", *nameserver, self.hostname, e)
                continue
            if response.header.rcode != RCODE.NOERROR:
                logger.warning("Bootstrap nameserver %s:%d answered %s for %s",
                               *nameserver, RCODE.get(response.header.rcode), self.hostname)
                continue
            record = next((rr for rr in response.rr if rr.rtype == QTYPE.A), None)
            if record is None:
                logger.warning("Bootstrap nameserver %s:%d has no A record for %s", *nameserver, self.hostname)
                continue
            ip = str(record.rdata)
            if record.ttl > 0:
                self._entry = CacheEntry(ip, self._clock() + record.ttl)
            logger.info("Bootstrapped %s -> %s (ttl %d) via %s:%d", self.hostname, ip, record.ttl, *nameserver)
            return ip
        raise BootstrapResolutionError(f"unable to resolve {self.hostname}")
