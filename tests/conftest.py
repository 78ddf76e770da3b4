import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest
import requests
from dnslib import QTYPE, RR, A, DNSHeader, DNSQuestion, DNSRecord

from dohrelay.models import ResolverConfig

EXAMPLE_ANSWER = {
    "Status": 0,
    "TC": False,
    "RD": True,
    "RA": True,
    "AD": False,
    "CD": False,
    "Question": [{"name": "example.com.", "type": 1}],
    "Answer": [{"name": "example.com.", "type": 1, "TTL": 300, "data": "93.184.216.34"}],
}


def make_request(name="example.com.", qtype="A", rd=1, id=4242):
    request = DNSRecord(DNSHeader(id=id), q=DNSQuestion(name, getattr(QTYPE, qtype)))
    request.header.rd = rd
    return request


class FakeResponse:
    def __init__(self, body, status_code=200):
        if not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode()
        self.content = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        pass


class FakeResolver:
    hostname = "doh.test"
    cached = None

    def __init__(self, ip="127.0.0.1", error=None):
        self.ip = ip
        self.error = error
        self.calls = 0

    def resolve(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.ip


class StaticHandler:
    """Answers every query with one A record for the question name."""

    def __init__(self, ip="192.0.2.10", ttl=60, count=1):
        self.ip = ip
        self.ttl = ttl
        self.count = count
        self.requests = []

    def handle(self, request):
        self.requests.append(request)
        reply = request.reply()
        for _ in range(self.count):
            reply.add_answer(RR(request.q.qname, QTYPE.A, rdata=A(self.ip), ttl=self.ttl))
        return reply


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def config():
    return ResolverConfig()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def doh_server():
    """Local plain-HTTP stand-in for the JSON API, serving EXAMPLE_ANSWER."""
    state = {"body": EXAMPLE_ANSWER, "status": 200, "paths": [], "hosts": []}

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            state["paths"].append(self.path)
            state["hosts"].append(self.headers.get("Host"))
            body = json.dumps(state["body"]).encode()
            self.send_response(state["status"])
            self.send_header("Content-Type", "application/dns-json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    state["port"] = server.server_address[1]
    yield state
    server.shutdown()
    server.server_close()
