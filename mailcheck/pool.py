"""Quota-aware pool of Smarty API credentials.

A free Smarty account is limited to 1000 lookups per month, and the mailbox
catalog holds ~1700 locations, so a run spreads its lookups over several
accounts. The pool hands out one reserved unit of quota per checkout; the
caller settles it with ``commit`` (the provider charged the lookup) or
``release_without_use`` (it did not).
"""

import logging
import threading
from typing import Iterable, List, NamedTuple, Union

from .models import Credential, CredentialState

logger = logging.getLogger(__name__)

LEAST_USED = "least_used"
ROUND_ROBIN = "round_robin"
SELECTION_POLICIES = (LEAST_USED, ROUND_ROBIN)


class Exhausted:
    """Sentinel returned by ``checkout`` when no credential qualifies."""

    def __repr__(self) -> str:
        return "EXHAUSTED"

    def __bool__(self) -> bool:
        return False


EXHAUSTED = Exhausted()


class Availability(NamedTuple):
    """Quota picture taken under one lock, split by the caller's ``exclude`` set."""

    remaining_untried: int
    reserved_untried: int
    remaining_all: int
    reserved_all: int


class CredentialPool:
    def __init__(self, credentials: Iterable[Credential], policy: str = LEAST_USED):
        self._credentials: List[Credential] = list(credentials)
        if not self._credentials:
            raise ValueError("credential pool needs at least one credential")
        ids = [c.auth_id for c in self._credentials]
        if len(set(ids)) != len(ids):
            raise ValueError("credential ids must be unique")
        if policy not in SELECTION_POLICIES:
            raise ValueError(f"unknown selection policy: {policy}")
        self.policy = policy
        self._lock = threading.Lock()
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._credentials)

    def checkout(self, exclude: Iterable[str] = ()) -> Union[Credential, Exhausted]:
        """Reserve one unit of quota on an available credential not in ``exclude``."""
        excluded = set(exclude)
        with self._lock:
            candidates = [
                (i, c)
                for i, c in enumerate(self._credentials)
                if c.available and c.auth_id not in excluded
            ]
            if not candidates:
                return EXHAUSTED
            if self.policy == ROUND_ROBIN:
                n = len(self._credentials)
                idx, credential = min(candidates, key=lambda t: (t[0] - self._cursor) % n)
                self._cursor = (idx + 1) % n
            else:
                idx, credential = min(
                    candidates, key=lambda t: (t[1].quota_used + t[1].reserved, t[0])
                )
            credential.reserved += 1
            return credential

    def commit(self, credential: Credential) -> None:
        """Settle a reservation as consumed by the provider."""
        with self._lock:
            self._unreserve(credential)
            credential.quota_used += 1
            if credential.quota_used == credential.quota_limit:
                logger.info("credential [%s] reached its quota of %d", credential.auth_id, credential.quota_limit)

    def release_without_use(self, credential: Credential) -> None:
        """Give a reserved unit back; the provider never charged for it."""
        with self._lock:
            self._unreserve(credential)

    def retire(self, credential: Credential) -> None:
        with self._lock:
            if not credential.retired:
                credential.retired = True
                logger.warning("credential [%s] retired for the rest of the run", credential.auth_id)

    def remaining(self, exclude: Iterable[str] = ()) -> int:
        """Unreserved units left on credentials that are still in service."""
        excluded = set(exclude)
        with self._lock:
            return sum(c.remaining for c in self._credentials if c.auth_id not in excluded)

    def reserved(self, exclude: Iterable[str] = ()) -> int:
        """Outstanding reservations on credentials that could still hand units back."""
        excluded = set(exclude)
        with self._lock:
            return sum(
                c.reserved
                for c in self._credentials
                if not c.retired and c.auth_id not in excluded
            )

    def availability(self, exclude: Iterable[str] = ()) -> Availability:
        excluded = set(exclude)
        with self._lock:
            live = [c for c in self._credentials if not c.retired]
            untried = [c for c in live if c.auth_id not in excluded]
            return Availability(
                remaining_untried=sum(c.remaining for c in untried),
                reserved_untried=sum(c.reserved for c in untried),
                remaining_all=sum(c.remaining for c in live),
                reserved_all=sum(c.reserved for c in live),
            )

    def exhausted_count(self) -> int:
        with self._lock:
            return sum(1 for c in self._credentials if c.retired or c.quota_used >= c.quota_limit)

    def snapshot(self) -> List[CredentialState]:
        with self._lock:
            return [
                CredentialState(c.auth_id, c.quota_used, c.reserved, c.quota_limit, c.retired)
                for c in self._credentials
            ]

    def _unreserve(self, credential: Credential) -> None:
        if not any(c is credential for c in self._credentials):
            raise ValueError(f"credential [{credential.auth_id}] does not belong to this pool")
        if credential.reserved <= 0:
            raise ValueError(f"credential [{credential.auth_id}] has no outstanding reservation")
        credential.reserved -= 1
