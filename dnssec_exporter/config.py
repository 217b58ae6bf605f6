import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

import dns.exception
import dns.name
import dns.rdatatype
import dns.tsig
import yaml

from .dns_utils import split_address

logger = logging.getLogger(__name__)

# Record type sentinel for a full zone transfer.
AXFR = "AXFR"

TRUST_MODELS = ("ad", "validate")

TSIG_ALGORITHMS: Dict[str, dns.name.Name] = {
    "hmac-md5": dns.tsig.HMAC_MD5,
    "hmac-sha1": dns.tsig.HMAC_SHA1,
    "hmac-sha224": dns.tsig.HMAC_SHA224,
    "hmac-sha256": dns.tsig.HMAC_SHA256,
    "hmac-sha384": dns.tsig.HMAC_SHA384,
    "hmac-sha512": dns.tsig.HMAC_SHA512,
}

CheckKey = Tuple[str, str, str]


class ConfigError(ValueError):
    """Raised when the check configuration cannot be used."""


@dataclass(frozen=True)
class Check(object):
    """A single configured zone/record/type to evaluate."""

    zone: str
    record: str
    type: str

    @property
    def key(self) -> CheckKey:
        return (self.zone, self.record, self.type)

    @property
    def is_transfer(self) -> bool:
        return self.type == AXFR

    @property
    def hostname(self) -> str:
        """Fully qualified owner name queried for this check."""
        if self.record == "@":
            return f"{self.zone}."
        return f"{self.record}.{self.zone}."


@dataclass(frozen=True)
class Credential(object):
    """TSIG key used to authenticate a zone transfer."""

    algorithm: str
    key_name: str
    secret: str

    def to_key(self) -> dns.tsig.Key:
        algorithm = self.algorithm.lower().rstrip(".")
        return dns.tsig.Key(
            self.key_name, self.secret, TSIG_ALGORITHMS.get(algorithm, algorithm)
        )


@dataclass(frozen=True)
class ExporterConfig(object):
    """Process-wide settings handed to the exporter at construction time."""

    resolvers: Tuple[str, ...]
    timeout: float = 10.0
    trust_model: str = "ad"

    def __post_init__(self) -> None:
        object.__setattr__(self, "resolvers", tuple(self.resolvers))
        if not self.resolvers:
            raise ConfigError("at least one resolver is required")
        for resolver in self.resolvers:
            try:
                split_address(resolver)
            except ValueError as e:
                raise ConfigError(str(e))
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.trust_model not in TRUST_MODELS:
            raise ConfigError(
                f"unknown trust model {self.trust_model!r}, expected one of {', '.join(TRUST_MODELS)}"
            )

    @property
    def primary_resolver(self) -> str:
        return self.resolvers[0]


def parse_resolvers(value: str) -> Tuple[str, ...]:
    """Split a comma separated resolver list, keeping its order."""
    resolvers: List[str] = []
    for resolver in value.split(","):
        resolver = resolver.strip()
        if not resolver:
            continue
        if resolver in resolvers:
            logger.warning("Ignoring duplicate resolver %s", resolver)
            continue
        resolvers.append(resolver)
    return tuple(resolvers)


def make_check(zone: Any, record: Any, rtype: Any) -> Check:
    """Build a validated Check from raw configuration values."""
    zone = str(zone or "").strip().rstrip(".")
    if not zone:
        raise ConfigError("check is missing a zone")
    record = str(record or "@").strip() or "@"
    rtype = str(rtype or "").strip().upper()
    if not rtype:
        raise ConfigError(f"check for {record} in {zone} is missing a type")
    if rtype != AXFR:
        try:
            dns.rdatatype.from_text(rtype)
        except dns.rdatatype.UnknownRdatatype:
            raise ConfigError(f"unknown record type {rtype!r} for {record} in {zone}")
    check = Check(zone=zone, record=record, type=rtype)
    try:
        dns.name.from_text(check.hostname)
    except dns.name.NameTooLong:
        raise ConfigError(f"name {check.hostname} is too long")
    except dns.exception.SyntaxError as e:
        raise ConfigError(f"invalid name {check.hostname}: {e}")
    return check


def make_credential(entry: Dict[str, Any]) -> Credential:
    """Build a validated Credential; the secret must be base64."""
    key_name = str(entry.get("key_name") or "").strip()
    secret = str(entry.get("secret") or "").strip()
    algorithm = str(entry.get("algorithm") or "hmac-sha256").strip()
    if not key_name or not secret:
        raise ConfigError("credential needs both key_name and secret")
    try:
        dns.name.from_text(key_name)
    except dns.exception.DNSException as e:
        raise ConfigError(f"invalid TSIG key name {key_name!r}: {e}")
    try:
        base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        raise ConfigError(f"secret for key {key_name} is not valid base64")
    known = set(TSIG_ALGORITHMS) | {str(a).lower().rstrip(".") for a in TSIG_ALGORITHMS.values()}
    if algorithm.lower().rstrip(".") not in known:
        raise ConfigError(f"unsupported TSIG algorithm {algorithm!r} for key {key_name}")
    return Credential(algorithm=algorithm, key_name=key_name, secret=secret)


def legacy_config(document: Dict[str, Any]) -> Dict[str, Any]:
    """Map the TOML layout (``[[Records]]`` with Zone/Record/Type) to records."""
    records = document.get("Records")
    if not isinstance(records, list):
        raise ConfigError("legacy configuration needs a [[Records]] list")
    converted = []
    for entry in records:
        if not isinstance(entry, dict):
            raise ConfigError(f"record entry must be a table, got {entry!r}")
        converted.append({
            "zone": entry.get("Zone"),
            "record": entry.get("Record"),
            "type": entry.get("Type"),
        })
    return {"records": converted}


class CheckRegistry(object):
    """Immutable set of checks and the TSIG keys that go with them."""

    def __init__(
        self,
        checks: List[Check],
        credentials: Optional[Dict[CheckKey, Credential]] = None,
    ) -> None:
        # Checks built by hand go through the same validation as loaded ones.
        self._checks: Tuple[Check, ...] = tuple(
            make_check(c.zone, c.record, c.type) for c in checks
        )
        credentials = dict(credentials or {})
        known = {c.key for c in self._checks}
        for key in credentials:
            if key not in known:
                raise ConfigError(f"credential for {'/'.join(key)} does not match any check")
        self._credentials = credentials
        # Keys are built once so the secrets are in place before any query runs.
        self._keys: Dict[CheckKey, dns.tsig.Key] = {
            key: cred.to_key() for key, cred in credentials.items()
        }

    @property
    def checks(self) -> Tuple[Check, ...]:
        return self._checks

    def credential_for(self, check: Check) -> Optional[Credential]:
        return self._credentials.get(check.key)

    def key_for(self, check: Check) -> Optional[dns.tsig.Key]:
        return self._keys.get(check.key)

    def __len__(self) -> int:
        return len(self._checks)

    def __iter__(self):
        return iter(self._checks)

    @staticmethod
    def from_dict(config: Any) -> 'CheckRegistry':
        """Build a registry from the parsed configuration document."""
        if not isinstance(config, dict):
            raise ConfigError("configuration must be a mapping")
        records = config.get('records')
        if not isinstance(records, list):
            raise ConfigError("configuration needs a 'records' list")

        checks: List[Check] = []
        for entry in records:
            if not isinstance(entry, dict):
                raise ConfigError(f"record entry must be a mapping, got {entry!r}")
            check = make_check(entry.get('zone'), entry.get('record'), entry.get('type'))
            if check in checks:
                logger.warning("Ignoring duplicate check %s %s %s", *check.key)
                continue
            checks.append(check)
            logger.debug("Loaded check %s %s", check.hostname, check.type)

        credentials: Dict[CheckKey, Credential] = {}
        for entry in config.get('credentials') or []:
            if not isinstance(entry, dict):
                raise ConfigError(f"credential entry must be a mapping, got {entry!r}")
            check = make_check(entry.get('zone'), entry.get('record'), entry.get('type'))
            credentials[check.key] = make_credential(entry)
            logger.debug("Loaded TSIG key %s for %s", credentials[check.key].key_name, check.hostname)

        return CheckRegistry(checks, credentials)

    @staticmethod
    def load_from_file(config_file: Path) -> 'CheckRegistry':
        """Load checks and credentials from a YAML file.

        Files in the older TOML layout, a ``[[Records]]`` table per check
        with Zone/Record/Type keys, are still accepted.
        """
        try:
            text = Path(config_file).read_text()
        except OSError as e:
            raise ConfigError(f"couldn't open configuration file: {e}")
        try:
            document = tomllib.loads(text)
        except tomllib.TOMLDecodeError:
            document = {}
        if "Records" in document:
            logger.warning("%s uses the legacy TOML layout, consider converting it to YAML", config_file)
            config = legacy_config(document)
        else:
            try:
                config = yaml.safe_load(text)
            except yaml.YAMLError as e:
                raise ConfigError(f"couldn't parse configuration file: {e}")
        registry = CheckRegistry.from_dict(config)
        logger.info("Loaded %d checks from %s", len(registry), config_file)
        return registry
