import logging

from dnslib import CLASS, QTYPE, RCODE, DNSRecord

from dohrelay.errors import RejectedRequest

logger = logging.getLogger(__name__)

EDNS_DO_BIT = 0x8000


def requests_dnssec(request: DNSRecord) -> bool:
    # The DO bit lives in the TTL field of the OPT pseudo-record.
    return any(rr.rtype == QTYPE.OPT and rr.ttl & EDNS_DO_BIT for rr in request.ar)


def check_request(request: DNSRecord):
    """Return the single question of an acceptable query.

    Raises RejectedRequest with the reply code the client should get
    when the query is outside what the relay can forward upstream.
    """
    try:
        if len(request.questions) > 1:
            raise RejectedRequest("multiple questions", RCODE.NOTIMP)
        if not request.questions:
            raise RejectedRequest("no question", RCODE.FORMERR)
        if not request.header.rd:
            # no authoritative data of our own, only recursive queries are forwarded
            raise RejectedRequest("recursion not desired", RCODE.NOTIMP)
        if requests_dnssec(request):
            # the JSON API never returns RRSIGs
            raise RejectedRequest("DNSSEC requested", RCODE.FORMERR)
        question = request.questions[0]
        if question.qclass != CLASS.IN:
            raise RejectedRequest(f"class {question.qclass} not supported", RCODE.SERVFAIL)
    except RejectedRequest as e:
        logger.warning("Rejecting DNS request id=%d: %s", request.header.id, e)
        raise
    return question
