"""Shared test doubles: a scripted transport and a tiny TCP DNS server."""

import socket
import struct
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple, Union

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import dns.rrset

from dnssec_exporter.dns_utils import Reply, Signature

ORIGIN = "example.org."
SIG = "c2lnbmF0dXJl"


def sig(owner: str, covered: str, expiration: int) -> Signature:
    return Signature(dns.name.from_text(owner), covered, expiration)


def make_reply(
    rcode: int = dns.rcode.NOERROR,
    ad: bool = False,
    aa: bool = False,
    signatures=(),
) -> Reply:
    flags = dns.flags.QR
    if ad:
        flags |= dns.flags.AD
    if aa:
        flags |= dns.flags.AA
    return Reply(rcode=rcode, flags=flags, signatures=tuple(signatures))


def in_days(days: float) -> int:
    return int(time.time() + days * 86400)


def soa_rrset(name: str = ORIGIN) -> dns.rrset.RRset:
    return dns.rrset.from_text(
        name, 3600, "IN", "SOA",
        "ns1.example.org. test.example.org. 1 14400 3600 7200 60",
    )


def ns_rrset(name: str = ORIGIN) -> dns.rrset.RRset:
    return dns.rrset.from_text(name, 3600, "IN", "NS", "ns1.example.org.")


def rrsig_rrset(name: str, covered: str, expiration: int, inception: Optional[int] = None) -> dns.rrset.RRset:
    if inception is None:
        inception = int(time.time()) - 3600
    return dns.rrset.from_text(
        name, 3600, "IN", "RRSIG",
        f"{covered} 13 2 3600 {expiration} {inception} 12345 {ORIGIN} {SIG}",
    )


class FakeTransport(object):
    """Answers requests from a table keyed by (resolver, qname, qtype).

    Missing entries time out; exception values are raised.
    """

    def __init__(self, replies: Dict[Tuple[str, str, str], Union[Reply, Exception]]) -> None:
        self.replies = replies
        self.calls: List[Tuple[str, str, dns.message.Message]] = []
        self.deadlines: List[Optional[float]] = []
        self._lock = threading.Lock()

    def _answer(
        self, kind: str, request: dns.message.Message, resolver: str, deadline: Optional[float]
    ) -> Reply:
        question = request.question[0]
        key = (resolver, question.name.to_text(), dns.rdatatype.to_text(question.rdtype))
        with self._lock:
            self.calls.append((kind, resolver, request))
            self.deadlines.append(deadline)
        reply = self.replies.get(key)
        if reply is None:
            raise dns.exception.Timeout()
        if isinstance(reply, Exception):
            raise reply
        return reply

    def exchange(self, request: dns.message.Message, resolver: str, deadline: Optional[float] = None) -> Reply:
        return self._answer("exchange", request, resolver, deadline)

    def transfer(self, request: dns.message.Message, resolver: str, deadline: Optional[float] = None) -> Reply:
        return self._answer("transfer", request, resolver, deadline)


def _recv_exact(conn: socket.socket, count: int) -> bytes:
    data = b""
    while len(data) < count:
        chunk = conn.recv(count - len(data))
        if not chunk:
            raise EOFError("connection closed")
        data += chunk
    return data


class DNSServer(object):
    """TCP DNS server on localhost that answers one message per connection."""

    def __init__(self, handler: Callable[[bytes], List[bytes]]) -> None:
        self.handler = handler
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(16)
        self.address = "127.0.0.1:%d" % self.sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, name="test-dns-server", daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            with conn:
                try:
                    (length,) = struct.unpack("!H", _recv_exact(conn, 2))
                    wire = _recv_exact(conn, length)
                    for reply in self.handler(wire):
                        conn.sendall(struct.pack("!H", len(reply)) + reply)
                except (EOFError, OSError):
                    continue

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


def lookup_handler(expiration: int, ad: bool = True) -> Callable[[bytes], List[bytes]]:
    """Answer SOA queries with one signed SOA record."""

    def handle(wire: bytes) -> List[bytes]:
        query = dns.message.from_wire(wire)
        response = dns.message.make_response(query)
        if ad:
            response.flags |= dns.flags.AD
        question = query.question[0]
        if question.rdtype == dns.rdatatype.SOA:
            name = question.name.to_text()
            response.answer.append(soa_rrset(name))
            response.answer.append(rrsig_rrset(name, "SOA", expiration))
        return [response.to_wire()]

    return handle


def _error_reply(wire: bytes, rcode: int) -> bytes:
    reply = dns.message.Message(id=struct.unpack("!H", wire[:2])[0])
    reply.flags = dns.flags.QR
    reply.set_rcode(rcode)
    return reply.to_wire()


def transfer_handler(
    records: List[dns.rrset.RRset],
    keyring: Optional[dict] = None,
    refuse: bool = False,
) -> Callable[[bytes], List[bytes]]:
    """Serve a single-message AXFR of ``records`` framed by the SOA.

    With a keyring, unsigned or badly signed requests are refused.
    """

    def handle(wire: bytes) -> List[bytes]:
        try:
            query = dns.message.from_wire(wire, keyring=keyring)
        except dns.exception.DNSException:
            return [_error_reply(wire, dns.rcode.NOTAUTH)]
        response = dns.message.make_response(query)
        if refuse or (keyring is not None and not query.had_tsig):
            response.set_rcode(dns.rcode.REFUSED)
            return [response.to_wire()]
        response.answer.append(soa_rrset())
        response.answer.extend(records)
        response.answer.append(soa_rrset())
        return [response.to_wire()]

    return handle
