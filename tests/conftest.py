import pytest

from dnssec_exporter.config import Check

from helpers import DNSServer


@pytest.fixture
def dns_server():
    """Start in-process DNS servers for a test and stop them afterwards."""
    servers = []

    def start(handler):
        server = DNSServer(handler)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


@pytest.fixture
def soa_check():
    return Check(zone="example.org", record="@", type="SOA")


@pytest.fixture
def axfr_check():
    return Check(zone="example.org", record="@", type="AXFR")
