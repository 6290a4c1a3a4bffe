"""Outcome builders and a scripted client shared by the test modules."""

import threading
from collections import defaultdict
from typing import Dict, List

from mailcheck.models import Address, Credential, Failed, FailureCause, Rdi, Verified


def residential(addr: Address) -> Verified:
    return Verified(False, True, addr.one_line().upper(), Rdi.RESIDENTIAL)


def commercial(addr: Address) -> Verified:
    return Verified(False, False, addr.one_line().upper(), Rdi.COMMERCIAL)


def cmra(addr: Address) -> Verified:
    return Verified(True, False, addr.one_line().upper(), Rdi.COMMERCIAL)


def protocol_error() -> Failed:
    return Failed(FailureCause.PROTOCOL_ERROR, "Malformed response", consumed=True)


def network_error() -> Failed:
    return Failed(FailureCause.NETWORK_ERROR, "HTTP error: connection refused")


def quota_exceeded(retire: bool = False) -> Failed:
    return Failed(FailureCause.QUOTA_EXCEEDED, "Too many requests (429)", retire=retire)


class FakeClient:
    """Scripted stand-in for SmartyClient.

    ``script`` maps an address key to a list of outcomes (or callables taking
    the address) returned on successive calls; the last entry repeats.
    ``by_credential`` maps a credential id to an outcome that overrides the
    script whenever that credential is used.
    """

    def __init__(self, script=None, default=commercial, by_credential=None):
        self.script: Dict[str, list] = script or {}
        self.default = default
        self.by_credential = by_credential or {}
        self.calls: Dict[str, List[str]] = defaultdict(list)
        self._lock = threading.Lock()

    def verify(self, address: Address, credential: Credential):
        key = address.key()
        with self._lock:
            n = len(self.calls[key])
            self.calls[key].append(credential.auth_id)
        if credential.auth_id in self.by_credential:
            outcome = self.by_credential[credential.auth_id]
        else:
            steps = self.script.get(key)
            outcome = steps[min(n, len(steps) - 1)] if steps else self.default
        return outcome(address) if callable(outcome) else outcome

    def call_count(self, address: Address) -> int:
        with self._lock:
            return len(self.calls[address.key()])

    @property
    def total_calls(self) -> int:
        with self._lock:
            return sum(len(v) for v in self.calls.values())


def make_address(n: int, **kwargs) -> Address:
    fields = dict(
        street=f"{100 + n} Main St Ste {n}",
        city="Madison",
        state="WI",
        zip="53703",
        name=f"Location {n}",
        link=f"https://example.com/l/{n}",
        price="9.99",
    )
    fields.update(kwargs)
    return Address(**fields)


