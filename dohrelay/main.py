import argparse
import logging
import signal
import sys
import threading

import uvicorn
from pydantic import ValidationError

from dohrelay.api import create_app
from dohrelay.bootstrap import BootstrapResolver
from dohrelay.dns_server import DNS_PORT, TCPServer, UDPServer
from dohrelay.doh_client import EndpointDialer, build_session
from dohrelay.handler import TranslationHandler
from dohrelay.models import DEFAULT_ENDPOINT, ResolverConfig

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="doh-relay", description="Relay classic DNS queries to a DNS-over-HTTPS JSON API")
    parser.add_argument("--host", default="0.0.0.0", help="address to bind to")
    parser.add_argument("--port", type=int, default=DNS_PORT, help="port to bind to")
    parser.add_argument("--noedns", action="store_true", help="disable EDNS client subnet")
    parser.add_argument("--cd", action="store_true", help="disable DNSSEC validation performed by upstream API")
    parser.add_argument("--api", default=DEFAULT_ENDPOINT, help="resolver HTTPS address")
    parser.add_argument("--bootstrap", action="append", metavar="IP:PORT",
                        help="nameserver used to resolve the API host (repeatable)")
    parser.add_argument("--http-port", type=int, default=0, help="serve the diagnostic HTTP API on this port")
    parser.add_argument("-v", "--verbose", action="store_true", help="print info on each request")
    return parser.parse_args(argv)


def build_config(args) -> ResolverConfig:
    kwargs = dict(endpoint=args.api, edns_disable=args.noedns, checking_disabled=args.cd)
    if args.bootstrap:
        kwargs["bootstrap_nameservers"] = args.bootstrap
    return ResolverConfig(**kwargs)


def build_handler(config: ResolverConfig):
    resolver = BootstrapResolver(config.endpoint_host, config.nameserver_addresses,
                                 timeout=config.bootstrap_timeout)
    session = build_session(EndpointDialer(resolver))
    return TranslationHandler(config, session), resolver


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s - %(levelname)s - %(message)s")
    try:
        config = build_config(args)
    except ValidationError as e:
        logger.error("Invalid configuration:\n%s", e)
        return 2

    handler, resolver = build_handler(config)
    servers = [UDPServer(handler, args.host, args.port), TCPServer(handler, args.host, args.port)]
    for server in servers:
        server.start()
    logger.info("Relaying to %s", config.endpoint)

    try:
        if args.http_port:
            uvicorn.run(create_app(handler, resolver), host=args.host, port=args.http_port)
        else:
            stop = threading.Event()
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
            stop.wait()
    except KeyboardInterrupt:
        pass
    finally:
        for server in servers:
            server.shutdown()
        handler.session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
