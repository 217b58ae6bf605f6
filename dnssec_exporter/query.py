"""Construction of the DNS requests sent for each check."""

from typing import Optional

import dns.message
import dns.name
import dns.rdatatype
import dns.tsig

from .config import Check

# Large enough for signed answers, matches what validating resolvers advertise.
EDNS_PAYLOAD = 4096


def owner_name(check: Check) -> dns.name.Name:
    return dns.name.from_text(check.hostname)


def build_query(check: Check, key: Optional[dns.tsig.Key] = None) -> dns.message.Message:
    """Build the request for a check.

    Standard lookups ask for the configured type with EDNS0 and the DO bit
    set so validating resolvers return RRSIGs and the AD flag. Zone transfer
    checks build an AXFR request, TSIG-signed when a key is supplied.
    """
    if check.is_transfer:
        request = dns.message.make_query(owner_name(check), dns.rdatatype.AXFR)
        if key is not None:
            request.use_tsig(key)
        return request

    return dns.message.make_query(
        owner_name(check),
        dns.rdatatype.from_text(check.type),
        use_edns=0,
        payload=EDNS_PAYLOAD,
        want_dnssec=True,
    )


def build_key_query(check: Check) -> dns.message.Message:
    """DNSKEY request for the zone apex, used by the client-side validator."""
    return dns.message.make_query(
        dns.name.from_text(f"{check.zone}."),
        dns.rdatatype.DNSKEY,
        use_edns=0,
        payload=EDNS_PAYLOAD,
        want_dnssec=True,
    )
