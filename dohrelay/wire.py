import logging
import re
from urllib.parse import quote

from dnslib import QTYPE, RCODE, RR, DNSHeader, DNSQuestion, DNSRecord
from pydantic import ValidationError

from dohrelay.errors import DecodeError
from dohrelay.models import DoHAnswer, DoHQuery, DoHResponse, ResolverConfig

logger = logging.getLogger(__name__)

NO_CLIENT_SUBNET = "0.0.0.0/0"
MAX_HEADER_RCODE = 15

# whitespace and characters with meaning in the zone file grammar
UNSAFE_NAME = re.compile(r'[\s;()"]')
TEXT_TYPES = (QTYPE.TXT, QTYPE.SPF)


def build_query(question: DNSQuestion, config: ResolverConfig, checking_disabled: bool = False) -> DoHQuery:
    return DoHQuery(
        name=str(question.qname),
        type=question.qtype,
        checking_disabled=config.checking_disabled or checking_disabled,
        edns_client_subnet=NO_CLIENT_SUBNET if config.edns_disable else None,
    )


def to_query_string(query: DoHQuery) -> str:
    qs = f"name={quote(query.name, safe='')}&type={query.type}"
    if query.checking_disabled:
        qs += "&cd=true"
    if query.edns_client_subnet:
        qs += f"&edns_client_subnet={query.edns_client_subnet}"
    return qs


def encode_query(question: DNSQuestion, config: ResolverConfig, checking_disabled: bool = False) -> str:
    return to_query_string(build_query(question, config, checking_disabled))


def status_to_rcode(status: int) -> int:
    if 0 <= status <= MAX_HEADER_RCODE:
        return status
    logger.warning("Upstream status %d does not fit a DNS reply code, answering SERVFAIL", status)
    return RCODE.SERVFAIL


def parse_response(body) -> DoHResponse:
    try:
        if isinstance(body, (str, bytes, bytearray)):
            return DoHResponse.model_validate_json(body)
        return DoHResponse.model_validate(body)
    except ValidationError as e:
        raise DecodeError(f"malformed DoH response: {e}") from e


def quote_text(data: str) -> str:
    escaped = data.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def has_unquoted_comment(data: str) -> bool:
    quoted = escaped = False
    for c in data:
        if escaped:
            escaped = False
        elif c == "\\":
            escaped = True
        elif c == '"':
            quoted = not quoted
        elif c == ";" and not quoted:
            return True
    return False


def answer_to_zone(answer: DoHAnswer) -> str:
    if not answer.name or UNSAFE_NAME.search(answer.name):
        raise DecodeError(f"unusable record name {answer.name!r}")
    if "\n" in answer.data or "\r" in answer.data:
        raise DecodeError(f"record data for {answer.name} spans several lines")
    data = answer.data
    if answer.type in TEXT_TYPES and not data.startswith('"'):
        data = quote_text(data)
    elif has_unquoted_comment(data):
        raise DecodeError(f"record data for {answer.name} contains an unquoted ';'")
    rtype = QTYPE[answer.type]
    return f"{answer.name} {answer.ttl} IN {rtype} {data}"


def answer_to_rr(answer: DoHAnswer) -> RR:
    zone = answer_to_zone(answer)
    try:
        records = RR.fromZone(zone)
    except Exception as e:
        raise DecodeError(f"unable to parse record '{zone}': {e}") from e
    if len(records) != 1:
        raise DecodeError(f"record '{zone}' parsed into {len(records)} records")
    return records[0]


def reply_header(request: DNSRecord, rcode: int) -> DNSHeader:
    header = DNSHeader(id=request.header.id)
    header.qr = 1
    header.opcode = request.header.opcode
    header.rd = request.header.rd
    header.cd = request.header.cd
    header.ra = 1
    header.rcode = rcode
    return header


def error_reply(request: DNSRecord, rcode: int) -> DNSRecord:
    questions = request.questions[:1]
    return DNSRecord(reply_header(request, rcode), questions=questions)


def reply_to(response: DoHResponse, request: DNSRecord) -> DNSRecord:
    answers = [answer_to_rr(answer) for answer in response.answer]
    reply = DNSRecord(reply_header(request, status_to_rcode(response.status)), questions=request.questions[:1])
    for rr in answers:
        reply.add_answer(rr)
    return reply


def decode_answer(body, request: DNSRecord) -> DNSRecord:
    return reply_to(parse_response(body), request)
