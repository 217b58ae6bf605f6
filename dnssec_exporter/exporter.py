import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

import dns.exception
import dns.name
import dns.rcode
from prometheus_client.core import GaugeMetricFamily

from . import metrics
from .config import Check, CheckRegistry, ExporterConfig
from .dns_utils import DNSTransport, Reply
from .expiry import earliest_signature
from .query import build_key_query, build_query
from .trust import resolves, validate_answer, zone_keys

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult(object):
    """Outcome of evaluating one check against one resolver."""

    check: Check
    resolver: str
    resolves: bool
    earliest_expiry: Optional[datetime] = None
    # Identity of the RRset the earliest signature covers. Defaults to the
    # configured record/type.
    owner: str = ""
    covered_type: str = ""

    @staticmethod
    def failed(check: Check, resolver: str) -> 'EvaluationResult':
        return EvaluationResult(
            check=check,
            resolver=resolver,
            resolves=False,
            owner=check.record,
            covered_type=check.type,
        )

    def series_identity(self) -> Tuple[str, str, str]:
        """Labels for the per-check series of this result.

        Transfers are labelled with the RRset whose signature expires first,
        everything else keeps the configured identity.
        """
        if self.check.is_transfer and self.earliest_expiry is not None:
            return (self.check.zone, self.owner, self.covered_type)
        return self.check.key


class DNSSECExporter(object):
    """Evaluates every check on every resolver and exposes the results.

    Registered with the prometheus_client registry as a custom collector;
    each scrape runs one full evaluation cycle.
    """

    def __init__(
        self,
        registry: CheckRegistry,
        config: ExporterConfig,
        transport: Optional[DNSTransport] = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self.transport = transport or DNSTransport(timeout=config.timeout)
        self._cycle_lock = threading.Lock()

    def pairs(self) -> List[Tuple[Check, str]]:
        return [
            (check, resolver)
            for check in self.registry.checks
            for resolver in self.config.resolvers
        ]

    def _exchange(self, check: Check, resolver: str, deadline: float) -> Reply:
        request = build_query(check, self.registry.key_for(check))
        if check.is_transfer:
            return self.transport.transfer(request, resolver, deadline=deadline)
        return self.transport.exchange(request, resolver, deadline=deadline)

    def _validates(self, check: Check, resolver: str, reply: Reply, deadline: float) -> bool:
        try:
            key_reply = self.transport.exchange(build_key_query(check), resolver, deadline=deadline)
        except (dns.exception.DNSException, OSError, EOFError) as e:
            logger.warning("error fetching DNSKEY for %s on %s: %s", check.zone, resolver, e)
            return False
        keys = zone_keys(check, key_reply)
        if not keys:
            logger.warning("no DNSKEY found for %s on %s", check.zone, resolver)
            return False
        return validate_answer(reply, keys)

    def evaluate(self, check: Check, resolver: str) -> EvaluationResult:
        """Run one check against one resolver.

        Network and protocol failures are logged and reported as a result
        that does not resolve. All exchanges of one evaluation share a single
        timeout.
        """
        deadline = time.monotonic() + self.config.timeout
        try:
            reply = self._exchange(check, resolver, deadline)
        except (dns.exception.DNSException, OSError, EOFError) as e:
            if check.is_transfer:
                logger.warning("zone transfer for %s failed on %s: %s",
                               check.hostname, resolver, e)
            else:
                logger.warning("error resolving %s %s on %s: %s",
                               check.hostname, check.type, resolver, e)
            return EvaluationResult.failed(check, resolver)

        if check.is_transfer and reply.rcode != dns.rcode.NOERROR:
            logger.warning(
                "zone transfer for %s refused by %s: %s (check the TSIG key and transfer ACL)",
                check.hostname, resolver, dns.rcode.to_text(reply.rcode),
            )
            return EvaluationResult.failed(check, resolver)

        if self.config.trust_model == "validate" and not check.is_transfer:
            ok = reply.rcode == dns.rcode.NOERROR and self._validates(check, resolver, reply, deadline)
        else:
            ok = resolves(check, reply)
        if not ok:
            logger.info(
                "%s %s does not resolve securely on %s: rcode=%s AD=%s AA=%s",
                check.hostname, check.type, resolver,
                dns.rcode.to_text(reply.rcode), reply.authenticated, reply.authoritative,
            )

        signature = earliest_signature(reply.signatures)
        if signature is None:
            logger.debug("No RRSIG for %s %s on %s", check.hostname, check.type, resolver)
            return EvaluationResult(
                check=check,
                resolver=resolver,
                resolves=ok,
                owner=check.record,
                covered_type=check.type,
            )

        origin = dns.name.from_text(f"{check.zone}.")
        owner = signature.owner.relativize(origin).to_text()
        expiry = datetime.fromtimestamp(signature.expiration, tz=timezone.utc)
        if check.is_transfer:
            logger.debug("Earliest RRSIG in %s on %s covers %s %s, expires %s",
                         check.zone, resolver, owner, signature.covered_type, expiry)
        return EvaluationResult(
            check=check,
            resolver=resolver,
            resolves=ok,
            earliest_expiry=expiry,
            owner=owner,
            covered_type=signature.covered_type,
        )

    def _run_unit(
        self,
        results: List[Optional[EvaluationResult]],
        index: int,
        check: Check,
        resolver: str,
    ) -> None:
        try:
            results[index] = self.evaluate(check, resolver)
        except Exception:
            logger.exception("Unexpected error checking %s %s on %s",
                             check.hostname, check.type, resolver)
            results[index] = EvaluationResult.failed(check, resolver)

    def run_cycle(self) -> List[EvaluationResult]:
        """Evaluate all (check, resolver) pairs concurrently.

        Returns one result per pair, in check-major order, once every worker
        has finished.
        """
        pairs = self.pairs()
        results: List[Optional[EvaluationResult]] = [None] * len(pairs)
        started = time.monotonic()

        workers = []
        for index, (check, resolver) in enumerate(pairs):
            worker = threading.Thread(
                target=self._run_unit,
                args=(results, index, check, resolver),
                name=f"check-{check.hostname}{check.type}@{resolver}",
                daemon=True,
            )
            workers.append(worker)
            worker.start()
        for worker in workers:
            worker.join()

        completed: List[EvaluationResult] = []
        for (check, resolver), result in zip(pairs, results):
            if result is None:
                logger.error("No result for %s %s on %s", check.hostname, check.type, resolver)
                result = EvaluationResult.failed(check, resolver)
            completed.append(result)

        logger.info(
            "Evaluated %d checks on %d resolvers in %.2fs, %d of %d resolve",
            len(self.registry), len(self.config.resolvers), time.monotonic() - started,
            sum(1 for r in completed if r.resolves), len(completed),
        )
        return completed

    def families(self, results: List[EvaluationResult]) -> List[GaugeMetricFamily]:
        """Turn one cycle's results into metric families.

        ``results`` must be in the pair order returned by run_cycle.
        """
        days_left: Dict[Tuple[str, ...], float] = {}
        resolves_samples: Dict[Tuple[str, ...], float] = {}
        expiry: Dict[Tuple[str, ...], float] = {}

        def put(samples, labels, value):
            # A transfer's effective identity may collide with a configured
            # check. The sooner expiry wins so neither one is hidden.
            if labels in samples:
                value = min(samples[labels], value)
            samples[labels] = value

        now = datetime.now(timezone.utc)
        resolver_count = len(self.config.resolvers)
        for index, result in enumerate(results):
            identity = result.series_identity()

            # AXFR is not a record type; a per-record resolves series would be bogus.
            if not result.check.is_transfer:
                resolves_samples[(result.resolver, *result.check.key)] = 1.0 if result.resolves else 0.0

            if result.resolves and result.earliest_expiry is not None:
                put(expiry, (result.resolver, *identity),
                    result.earliest_expiry.timestamp())

            # For compatibility, days_left only reflects the first configured
            # resolver and is bogus when that resolver fails to validate.
            if index % resolver_count == 0:
                put(days_left, identity,
                    metrics.days_left(result.earliest_expiry if result.resolves else None, now))

        families = []
        for family, samples in (
            (metrics.days_left_family(), days_left),
            (metrics.resolves_family(), resolves_samples),
            (metrics.expiry_family(), expiry),
        ):
            for labels, value in samples.items():
                family.add_metric(list(labels), value)
            families.append(family)
        return families

    def collect(self) -> Iterator[GaugeMetricFamily]:
        with self._cycle_lock:
            results = self.run_cycle()
        yield from self.families(results)

    def describe(self) -> Iterator[GaugeMetricFamily]:
        yield metrics.days_left_family()
        yield metrics.resolves_family()
        yield metrics.expiry_family()
