from dnslib import RCODE


class RelayError(Exception):
    pass


class RejectedRequest(RelayError):
    """Inbound query the relay will not forward. Carries the reply code to answer with."""

    def __init__(self, reason: str, rcode: int):
        super().__init__(reason)
        self.reason = reason
        self.rcode = rcode

    def __str__(self):
        return f"{self.reason} ({RCODE.get(self.rcode)})"


class UpstreamTransportError(RelayError):
    pass


class DecodeError(RelayError):
    pass


class BootstrapResolutionError(RelayError):
    pass
