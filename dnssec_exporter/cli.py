import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional, Tuple

from prometheus_client import REGISTRY, start_http_server

from .config import TRUST_MODELS, CheckRegistry, ConfigError, ExporterConfig, parse_resolvers
from .exporter import DNSSECExporter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="dnssec-exporter",
        description="Prometheus exporter for DNSSEC signature expiry",
    )
    p.add_argument("--listen-address", default=":9204", help="Prometheus metrics address (host:port)")
    p.add_argument("--config", type=Path, default=Path("/etc/dnssec-checks"), help="Configuration file")
    p.add_argument(
        "--resolvers",
        default="8.8.8.8:53,1.1.1.1:53",
        help="Resolvers to use (comma separated), the first one feeds record_days_left",
    )
    p.add_argument("--timeout", type=float, default=10.0, help="Timeout for network operations (seconds)")
    p.add_argument(
        "--trust-model",
        choices=TRUST_MODELS,
        default="ad",
        help="Trust the resolver's AD/AA flags, or validate signatures against the zone DNSKEYs",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return p.parse_args(argv)


def parse_listen_address(value: str) -> Tuple[str, int]:
    """Split ``host:port`` into the address and port for the HTTP server."""
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {value!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    try:
        host, port = parse_listen_address(args.listen_address)
        config = ExporterConfig(
            resolvers=parse_resolvers(args.resolvers),
            timeout=args.timeout,
            trust_model=args.trust_model,
        )
        registry = CheckRegistry.load_from_file(args.config)
    except (ConfigError, ValueError) as e:
        logger.error("%s", e)
        return 1

    exporter = DNSSECExporter(registry, config)
    REGISTRY.register(exporter)

    start_http_server(port, addr=host)
    logger.info(
        "Serving metrics on %s:%d for %d checks on resolvers %s (trust model: %s)",
        host, port, len(registry), ", ".join(config.resolvers), config.trust_model,
    )

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
