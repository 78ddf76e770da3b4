from typing import NamedTuple


class CacheEntry(NamedTuple):
    ip: str
    valid_until: float

    def is_valid(self, now: float) -> bool:
        return bool(self.ip) and now < self.valid_until

    def expires_in(self, now: float) -> float:
        return max(0.0, self.valid_until - now)
