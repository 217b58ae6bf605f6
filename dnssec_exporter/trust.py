"""Decide whether a reply counts as a resolving, trusted answer."""

import logging
from typing import Dict, Optional

import dns.dnssec
import dns.name
import dns.rcode
import dns.rdatatype
import dns.rrset

from .config import Check
from .dns_utils import Reply

logger = logging.getLogger(__name__)


def resolves(check: Check, reply: Reply) -> bool:
    """Resolver-trust policy.

    Zone transfers only need a NOERROR rcode. Lookups also need the AD flag
    from a validating recursive resolver, or the AA flag from an
    authoritative server.
    """
    if reply.rcode != dns.rcode.NOERROR:
        return False
    if check.is_transfer:
        return True
    return reply.authenticated or reply.authoritative


def validate_answer(
    reply: Reply,
    keys: Dict[dns.name.Name, dns.rrset.RRset],
    now: Optional[float] = None,
) -> bool:
    """Verify every signed RRset in the answer against the zone's DNSKEYs.

    Returns False when nothing in the answer is signed or any RRset fails
    validation.
    """
    rrsigs = [r for r in reply.answer if r.rdtype == dns.rdatatype.RRSIG]
    if not rrsigs:
        return False
    for rrsig in rrsigs:
        covered = [
            r for r in reply.answer
            if r.name == rrsig.name and r.rdtype == rrsig.covers
        ]
        if not covered:
            logger.debug("No RRset covered by RRSIG %s %s",
                         rrsig.name, dns.rdatatype.to_text(rrsig.covers))
            return False
        try:
            dns.dnssec.validate(covered[0], rrsig, keys, now=now)
        except dns.dnssec.ValidationFailure as e:
            logger.info("Signature over %s %s did not validate: %s",
                        rrsig.name, dns.rdatatype.to_text(rrsig.covers), e)
            return False
    return True


def zone_keys(check: Check, key_reply: Reply) -> Dict[dns.name.Name, dns.rrset.RRset]:
    """Collect the DNSKEY RRset of the check's zone from a DNSKEY reply."""
    origin = dns.name.from_text(f"{check.zone}.")
    for rrset in key_reply.answer:
        if rrset.name == origin and rrset.rdtype == dns.rdatatype.DNSKEY:
            return {origin: rrset}
    return {}
