"""Shared data models for mailbox address verification."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

DEFAULT_QUOTA = 1000  # free Smarty accounts get 1000 lookups per month

_PUNCTUATION = re.compile(r"[.,#]")
_SPACES = re.compile(r"\s+")


class MailcheckError(Exception):
    """Base class for errors that abort a run before dispatch."""


class ConfigurationError(MailcheckError):
    pass


class CatalogError(MailcheckError):
    pass


def _normalize(text: str) -> str:
    text = _PUNCTUATION.sub(" ", text or "")
    return _SPACES.sub(" ", text).strip().upper()


@dataclass(frozen=True)
class Address:
    street: str
    city: str
    state: str
    zip: str
    zip4: Optional[str] = None
    name: str = ""  # mailbox location name, carried through to the report
    link: str = ""
    price: str = ""

    def full_zip(self) -> str:
        if self.zip4:
            return f"{self.zip}-{self.zip4}"
        return self.zip

    def key(self) -> str:
        """Normalized text form; two addresses with the same key are duplicates."""
        parts = (self.street, self.city, self.state, self.full_zip())
        return "|".join(_normalize(p) for p in parts)

    def one_line(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.full_zip()}"


@dataclass
class Credential:
    auth_id: str
    auth_token: str = field(repr=False)
    quota_limit: int = DEFAULT_QUOTA
    quota_used: int = 0  # lookups the provider actually charged
    reserved: int = 0  # units checked out and not yet settled
    retired: bool = False

    @property
    def available(self) -> bool:
        return not self.retired and self.quota_used + self.reserved < self.quota_limit

    @property
    def remaining(self) -> int:
        if self.retired:
            return 0
        return max(self.quota_limit - self.quota_used - self.reserved, 0)


class Rdi(str, Enum):
    """Residential delivery indicator as reported by the provider."""

    RESIDENTIAL = "Residential"
    COMMERCIAL = "Commercial"
    UNKNOWN = "Unknown"


class FailureCause(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    PROTOCOL_ERROR = "protocol_error"
    NETWORK_ERROR = "network_error"


@dataclass(frozen=True)
class Verified:
    is_cmra: bool
    is_residential: bool
    normalized_address: str
    rdi: Rdi = Rdi.UNKNOWN

    consumed = True


@dataclass(frozen=True)
class Rejected:
    reason: str  # short human-readable summary

    consumed = True


@dataclass(frozen=True)
class Failed:
    cause: FailureCause
    detail: str = ""
    consumed: bool = False  # provider charged the lookup
    retire: bool = False  # credential is unusable for the rest of the run


ValidationOutcome = Union[Verified, Rejected, Failed]


@dataclass(frozen=True)
class AddressResult:
    index: int  # position in the original catalog
    address: Address
    outcome: ValidationOutcome
    attempts: int = 1  # provider calls spent on this address


@dataclass
class DispatchResult:
    results: List[AddressResult]  # sorted by catalog index
    unprocessed: List[Tuple[int, Address]]
    duplicates: int = 0
    exhausted_credentials: int = 0
    stop_reason: Optional[str] = None

    @property
    def complete(self) -> bool:
        return not self.unprocessed and self.stop_reason is None


@dataclass(frozen=True)
class CredentialState:
    auth_id: str
    quota_used: int
    reserved: int
    quota_limit: int
    retired: bool


