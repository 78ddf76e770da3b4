import ipaddress
import logging
import socket

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, NewConnectionError
from urllib3.util import connection

from dohrelay.errors import BootstrapResolutionError

logger = logging.getLogger(__name__)

DOH_HEADERS = {"Accept": "application/dns-json"}


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class EndpointDialer:
    """Opens TCP connections to the DoH endpoint by its bootstrapped address.

    Whatever host the HTTP layer asks for, the resolver's fixed hostname is
    the one that gets resolved. Wire this only into the endpoint's transport.
    """

    def __init__(self, resolver, create_connection=connection.create_connection):
        self.resolver = resolver
        self._create_connection = create_connection

    def resolve(self, host: str) -> str:
        if is_ip_literal(host):
            return host
        return self.resolver.resolve()

    def dial(self, address, timeout=None, source_address=None, socket_options=None):
        host, port = address
        ip = self.resolve(host)
        logger.debug("Dialing %s at %s:%d", host, ip, port)
        return self._create_connection((ip, port), timeout, source_address=source_address,
                                       socket_options=socket_options)


class DialerConnectionMixin:
    dialer = None

    def _new_conn(self):
        try:
            return self.dialer.dial((self.host, self.port), self.timeout,
                                    source_address=self.source_address,
                                    socket_options=self.socket_options)
        except BootstrapResolutionError as e:
            raise NewConnectionError(self, f"Failed to resolve '{self.host}': {e}") from e
        except socket.timeout as e:
            raise ConnectTimeoutError(
                self, f"Connection to {self.host} timed out. (connect timeout={self.timeout})") from e
        except OSError as e:
            raise NewConnectionError(self, f"Failed to establish a new connection: {e}") from e


def bind_pool_classes(dialer):
    http_conn = type("DialerHTTPConnection", (DialerConnectionMixin, HTTPConnection), {"dialer": dialer})
    https_conn = type("DialerHTTPSConnection", (DialerConnectionMixin, HTTPSConnection), {"dialer": dialer})
    return {
        "http": type("DialerHTTPConnectionPool", (HTTPConnectionPool,), {"ConnectionCls": http_conn}),
        "https": type("DialerHTTPSConnectionPool", (HTTPSConnectionPool,), {"ConnectionCls": https_conn}),
    }


class EndpointAdapter(HTTPAdapter):
    def __init__(self, dialer: EndpointDialer, **kwargs):
        self.dialer = dialer
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = bind_pool_classes(self.dialer)


def build_session(dialer: EndpointDialer) -> requests.Session:
    session = requests.Session()
    # environment proxies would bypass the dial hook
    session.trust_env = False
    session.headers.update(DOH_HEADERS)
    adapter = EndpointAdapter(dialer)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
