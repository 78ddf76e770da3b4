import logging

import requests
from dnslib import RCODE, DNSRecord

from dohrelay.errors import DecodeError, RejectedRequest, UpstreamTransportError
from dohrelay.models import ResolverConfig
from dohrelay.validator import check_request
from dohrelay.wire import decode_answer, encode_query, error_reply

logger = logging.getLogger(__name__)


class TranslationHandler:
    """Answers a decoded DNS query by asking the DoH JSON API.

    `session` is a requests.Session whose transport dials the endpoint through
    the bootstrap resolver. Every failure becomes a DNS reply.
    """

    def __init__(self, config: ResolverConfig, session: requests.Session):
        self.config = config
        self.session = session

    def url_for(self, query_string: str) -> str:
        separator = "&" if "?" in self.config.endpoint else "?"
        return self.config.endpoint + separator + query_string

    def fetch(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.config.http_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamTransportError(f"request to '{url}' failed: {e}") from e
        return response.content

    def handle(self, request: DNSRecord) -> DNSRecord:
        try:
            question = check_request(request)
        except RejectedRequest as e:
            return error_reply(request, e.rcode)

        try:
            url = self.url_for(encode_query(question, self.config, bool(request.header.cd)))
            logger.debug("Requesting URL: %s", url)
            body = self.fetch(url)
            logger.debug("Upstream response: %s", body)
            return decode_answer(body, request)
        except UpstreamTransportError as e:
            logger.error("%s", e)
        except DecodeError as e:
            logger.error("Unable to create response for %s: %s", question.qname, e)
        except Exception:
            logger.exception("Unexpected failure answering %s", question.qname)
        return error_reply(request, RCODE.SERVFAIL)
