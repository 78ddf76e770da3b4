import time

from dnslib import QTYPE, RCODE, DNSError, DNSRecord
from dnslib.label import DNSLabelError
from fastapi import APIRouter, FastAPI, HTTPException

from dohrelay.models import DNSQuery, DNSResponse


def build_question(domain: str, qtype: str) -> DNSRecord:
    try:
        return DNSRecord.question(domain, qtype.upper())
    except DNSError:
        raise HTTPException(status_code=400, detail=f"Unknown qtype '{qtype}'")
    except DNSLabelError as e:
        raise HTTPException(status_code=400, detail=str(e))


def records_from(reply: DNSRecord):
    return [
        DNSResponse(domain=str(rr.rname), qtype=QTYPE.get(rr.rtype), value=str(rr.rdata), ttl=rr.ttl)
        for rr in reply.rr
    ]


def create_app(handler, resolver=None, clock=time.monotonic) -> FastAPI:
    app = FastAPI(title="DNS-over-HTTPS relay")
    router = APIRouter()

    @router.get("/query-dns")
    def doh_get(domain: str, qtype: str = "A"):
        reply = handler.handle(build_question(domain, qtype))
        if reply.header.rcode != RCODE.NOERROR:
            raise HTTPException(status_code=502, detail=RCODE.get(reply.header.rcode))
        records = records_from(reply)
        if not records:
            raise HTTPException(status_code=404, detail="Record not found")
        return records

    @router.post("/query-dns")
    def doh_post(query: DNSQuery):
        return doh_get(query.domain, query.qtype)

    @router.get("/bootstrap")
    def bootstrap_state():
        if resolver is None:
            raise HTTPException(status_code=404, detail="No bootstrap resolver")
        entry = resolver.cached
        now = clock()
        valid = entry is not None and entry.is_valid(now)
        return {
            "hostname": resolver.hostname,
            "ip": entry.ip if valid else None,
            "expires_in": entry.expires_in(now) if valid else 0,
        }

    app.include_router(router)
    return app
