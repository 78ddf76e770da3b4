import ipaddress
from typing import Any, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_ENDPOINT = "https://dns.google.com/resolve"
DEFAULT_BOOTSTRAP_NAMESERVERS = ["8.8.8.8:53", "8.8.4.4:53"]


def split_host_port(address: str):
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"missing port in address '{address}'")
    port = int(port)
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in address '{address}'")
    return host, port


class ResolverConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    endpoint: str = DEFAULT_ENDPOINT
    edns_disable: bool = False
    checking_disabled: bool = False
    bootstrap_nameservers: List[str] = Field(default_factory=lambda: list(DEFAULT_BOOTSTRAP_NAMESERVERS))
    http_timeout: float = Field(default=5.0, gt=0)
    bootstrap_timeout: float = Field(default=3.0, gt=0)

    @field_validator("endpoint")
    @classmethod
    def check_endpoint(cls, value: str) -> str:
        url = urlparse(value)
        if url.scheme not in ("http", "https") or not url.hostname:
            raise ValueError(f"invalid DoH endpoint '{value}'")
        return value

    @field_validator("bootstrap_nameservers")
    @classmethod
    def check_nameservers(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one bootstrap nameserver is required")
        for address in value:
            host, _ = split_host_port(address)
            ipaddress.IPv4Address(host)
        return value

    @property
    def endpoint_host(self) -> str:
        return urlparse(self.endpoint).hostname

    @property
    def nameserver_addresses(self):
        return [split_host_port(address) for address in self.bootstrap_nameservers]


class DoHQuery(BaseModel):
    name: str
    type: int
    checking_disabled: bool = False
    edns_client_subnet: Optional[str] = None


class DoHQuestion(BaseModel):
    name: str
    type: int


class DoHAnswer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    type: int = Field(ge=0, le=65535)
    ttl: int = Field(alias="TTL", ge=0, le=2**32 - 1)
    data: str


class DoHResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    status: int = Field(alias="Status")
    truncated: bool = Field(default=False, alias="TC")
    recursion_desired: bool = Field(default=False, alias="RD")
    recursion_available: bool = Field(default=False, alias="RA")
    authenticated: bool = Field(default=False, alias="AD")
    checking_disabled: bool = Field(default=False, alias="CD")
    question: List[DoHQuestion] = Field(default_factory=list, alias="Question")
    answer: List[DoHAnswer] = Field(default_factory=list, alias="Answer")
    additional: List[Any] = Field(default_factory=list, alias="Additional")


class DNSQuery(BaseModel):
    domain: str
    qtype: str = "A"


class DNSResponse(BaseModel):
    domain: str
    qtype: str
    value: str
    ttl: int
