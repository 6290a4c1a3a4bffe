"""Smarty US Street Address API client."""

import logging
from typing import Optional

import requests

from .models import (
    Address,
    Credential,
    Failed,
    FailureCause,
    Rdi,
    Rejected,
    ValidationOutcome,
    Verified,
)

logger = logging.getLogger(__name__)

SMARTY_STREET_URL = "https://us-street.api.smarty.com/street-address"
DEFAULT_TIMEOUT = 12

# Status codes that describe a problem with the submitted address itself.
_BAD_INPUT = {400, 413, 422}


class ProtocolError(Exception):
    """The provider answered, but not in the shape we expect."""


class SmartyClient:
    """One lookup per call; retry policy belongs to the caller."""

    def __init__(
        self,
        base_url: str = SMARTY_STREET_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def verify(self, address: Address, credential: Credential) -> ValidationOutcome:
        """Look up ``address`` with ``credential`` and classify the answer."""
        params = {
            "auth-id": credential.auth_id,
            "auth-token": credential.auth_token,
            "street": address.street,
            "city": address.city,
            "state": address.state,
            "zipcode": address.full_zip(),
            "candidates": 1,
            "match": "enhanced",
            "license": "us-core-cloud",
        }
        try:
            r = self.session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            # the request may have been served and billed
            return Failed(FailureCause.NETWORK_ERROR, f"Timeout: {e}", consumed=True)
        except requests.RequestException as e:
            return Failed(FailureCause.NETWORK_ERROR, f"HTTP error: {e}")

        status = r.status_code
        if status == 401:
            return Failed(FailureCause.QUOTA_EXCEEDED, "Unauthorized (401)", retire=True)
        if status == 402:
            return Failed(FailureCause.QUOTA_EXCEEDED, "Payment required (402)", retire=True)
        if status == 429:
            return Failed(FailureCause.QUOTA_EXCEEDED, "Too many requests (429)")
        if status in _BAD_INPUT:
            return Rejected(f"Bad input ({status})")
        if status != 200:
            return Failed(FailureCause.NETWORK_ERROR, f"Unexpected status {status}")

        try:
            return parse_smarty_payload(r.json())
        except (ValueError, ProtocolError) as e:
            logger.warning("malformed Smarty response for [%s]: %s", address.one_line(), e)
            return Failed(FailureCause.PROTOCOL_ERROR, f"Malformed response: {e}", consumed=True)


def parse_smarty_payload(data) -> ValidationOutcome:
    """Parse a US Street API response body (a list of candidates)."""
    if not isinstance(data, list):
        raise ProtocolError(f"expected a list of candidates, got {type(data).__name__}")
    if not data:
        return Rejected("No candidates")

    candidate = data[0]
    if not isinstance(candidate, dict):
        raise ProtocolError("candidate is not an object")
    analysis = candidate.get("analysis")
    metadata = candidate.get("metadata")
    if not isinstance(analysis, dict) or not isinstance(metadata, dict):
        raise ProtocolError("candidate lacks analysis/metadata")

    if (analysis.get("dpv_match_code") or "").upper() == "N":
        return Rejected("Not a deliverable address (DPV N)")

    cmra = (analysis.get("dpv_cmra") or "").upper()
    if cmra not in ("Y", "N"):
        raise ProtocolError(f"failed to parse CMRA: {analysis.get('dpv_cmra')!r}")

    rdi_raw = (metadata.get("rdi") or "").lower()
    if rdi_raw == "residential":
        rdi = Rdi.RESIDENTIAL
    elif rdi_raw == "commercial":
        rdi = Rdi.COMMERCIAL
    elif rdi_raw == "":
        rdi = Rdi.UNKNOWN
    else:
        raise ProtocolError(f"failed to parse RDI: {metadata.get('rdi')!r}")

    line1 = candidate.get("delivery_line_1") or ""
    last_line = candidate.get("last_line") or ""
    normalized = ", ".join(p for p in (line1, last_line) if p).upper()

    return Verified(
        is_cmra=cmra == "Y",
        is_residential=rdi is Rdi.RESIDENTIAL,
        normalized_address=normalized,
        rdi=rdi,
    )
