"""Prometheus metric definitions for the exporter."""

import math
from datetime import datetime, timezone
from typing import Optional

from prometheus_client.core import GaugeMetricFamily

# Reported for an unset expiry so days_left lands far outside any sane range.
BOGUS_EXPIRY = datetime.fromtimestamp(0, tz=timezone.utc)

CHECK_LABELS = ["zone", "record", "type"]
RESOLVER_LABELS = ["resolver", "zone", "record", "type"]


def days_left_family() -> GaugeMetricFamily:
    return GaugeMetricFamily(
        "dnssec_zone_record_days_left",
        "Number of days the signature will be valid",
        labels=CHECK_LABELS,
    )


def resolves_family() -> GaugeMetricFamily:
    return GaugeMetricFamily(
        "dnssec_zone_record_resolves",
        "Does the record resolve using the specified DNSSEC enabled resolvers",
        labels=RESOLVER_LABELS,
    )


def expiry_family() -> GaugeMetricFamily:
    return GaugeMetricFamily(
        "dnssec_zone_record_earliest_rrsig_expiry",
        "Earliest expiring RRSIG covering the record on resolver in unixtime",
        labels=RESOLVER_LABELS,
    )


def days_left(expiry: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Days until ``expiry``, truncated to whole hours.

    An unset expiry is measured against the Unix epoch.
    """
    if expiry is None:
        expiry = BOGUS_EXPIRY
    if now is None:
        now = datetime.now(timezone.utc)
    hours = math.trunc((expiry - now).total_seconds() / 3600)
    return hours / 24
