"""DNSSEC exporter package.

Provides check configuration, DNS queries, signature expiry metrics, and CLI entry point.
"""

from .config import Check, CheckRegistry, ConfigError, Credential, ExporterConfig  # pyright: ignore[reportUnusedImport] # noqa: F401
from .dns_utils import DNSTransport, Reply, Signature  # pyright: ignore[reportUnusedImport] # noqa: F401
from .exporter import DNSSECExporter, EvaluationResult  # pyright: ignore[reportUnusedImport] # noqa: F401
