import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import dns.exception
import dns.flags
import dns.inet
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.resolver
import dns.rrset
import dns.xfr
import dns.zone

logger = logging.getLogger(__name__)

DEFAULT_PORT = 53


@dataclass(frozen=True)
class Signature(object):
    """The parts of an RRSIG the expiry selection cares about."""

    owner: dns.name.Name
    covered_type: str
    expiration: int


@dataclass(frozen=True)
class Reply(object):
    """A response reduced to what the trust and expiry logic needs."""

    rcode: int
    flags: int = 0
    signatures: Tuple[Signature, ...] = ()
    answer: Tuple[dns.rrset.RRset, ...] = ()

    @property
    def authenticated(self) -> bool:
        return bool(self.flags & dns.flags.AD)

    @property
    def authoritative(self) -> bool:
        return bool(self.flags & dns.flags.AA)

    @staticmethod
    def from_message(message: dns.message.Message) -> 'Reply':
        signatures = []
        for rrset in message.answer:
            if rrset.rdtype != dns.rdatatype.RRSIG:
                continue
            for rrsig in rrset:
                signatures.append(
                    Signature(
                        owner=rrset.name,
                        covered_type=dns.rdatatype.to_text(rrsig.type_covered),
                        expiration=rrsig.expiration,
                    )
                )
        return Reply(
            rcode=message.rcode(),
            flags=message.flags,
            signatures=tuple(signatures),
            answer=tuple(message.answer),
        )

    @staticmethod
    def from_zone(zone: dns.zone.Zone) -> 'Reply':
        """Reply for a completed zone transfer, covering every RRSIG in the zone."""
        # RRSIG rdatasets are stored per covered type, so match on rdtype only.
        signatures = [
            Signature(
                owner=name,
                covered_type=dns.rdatatype.to_text(rrsig.type_covered),
                expiration=rrsig.expiration,
            )
            for name, rdataset in zone.iterate_rdatasets()
            if rdataset.rdtype == dns.rdatatype.RRSIG
            for rrsig in rdataset
        ]
        return Reply(rcode=dns.rcode.NOERROR, signatures=tuple(signatures))


def split_address(resolver: str) -> Tuple[str, int]:
    """Split ``host:port``, ``[v6]:port`` or a bare host into host and port."""
    resolver = resolver.strip()
    if resolver.startswith("["):
        host, _, rest = resolver[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif resolver.count(":") == 1:
        host, _, port = resolver.partition(":")
    else:
        # Bare IPv6 address or hostname without a port
        host, port = resolver, ""
    if not host:
        raise ValueError(f"resolver address {resolver!r} has no host")
    try:
        return host, int(port) if port else DEFAULT_PORT
    except ValueError:
        raise ValueError(f"resolver address {resolver!r} has an invalid port")


class DNSTransport(object):
    """Performs the network exchanges for the exporter over TCP.

    Every method takes an optional ``deadline`` on the ``time.monotonic()``
    clock. All the network steps of one unit of work share it, so a unit never
    runs past a single timeout. Without a deadline each call gets the full
    timeout.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def remaining(self, deadline: Optional[float] = None) -> float:
        if deadline is None:
            return self.timeout
        left = deadline - time.monotonic()
        if left <= 0:
            raise dns.exception.Timeout(timeout=self.timeout)
        return left

    def resolve_address(self, host: str, deadline: Optional[float] = None) -> str:
        """Return an IP address for ``host``, resolving it when it is a name."""
        if dns.inet.is_address(host):
            return host
        answer = dns.resolver.resolve(host, "A", lifetime=self.remaining(deadline))
        address = answer[0].address
        logger.debug("Resolved resolver %s to %s", host, address)
        return address

    def exchange(
        self,
        request: dns.message.Message,
        resolver: str,
        deadline: Optional[float] = None,
    ) -> Reply:
        """Send a single query and return the reduced reply."""
        host, port = split_address(resolver)
        address = self.resolve_address(host, deadline)
        response = dns.query.tcp(
            request,
            address,
            timeout=self.remaining(deadline),
            port=port,
        )
        return Reply.from_message(response)

    def transfer(
        self,
        request: dns.message.Message,
        resolver: str,
        deadline: Optional[float] = None,
    ) -> Reply:
        """Run a zone transfer to completion and return every signature in it.

        TSIG is taken from the request, so a signed request has its reply
        verified with the same key. A non-NOERROR rcode from the server is
        returned as the reply rcode; other failures raise.
        """
        host, port = split_address(resolver)
        address = self.resolve_address(host, deadline)
        origin = request.question[0].name
        zone = dns.zone.Zone(origin, relativize=False)
        remaining = self.remaining(deadline)
        try:
            dns.query.inbound_xfr(
                address,
                zone,
                query=request,
                port=port,
                timeout=remaining,
                lifetime=remaining,
            )
        except dns.xfr.TransferError as e:
            return Reply(rcode=e.rcode)
        return Reply.from_zone(zone)
