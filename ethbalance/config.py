import yaml
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from web3 import Web3

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "ethereum"
DEFAULT_ADDRESSES = "0x0"
DEFAULT_SCRAPE_INTERVAL = 60


class InvalidAddressError(ValueError):
    def __init__(self, raw: str):
        super().__init__(f"Invalid address: {raw}")
        self.raw = raw


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class LabeledAddress:
    name: str
    address: str
    label: str


@dataclass
class ExporterSettings:
    port: Optional[int] = None
    scrape_interval: int = DEFAULT_SCRAPE_INTERVAL


@dataclass
class Settings:
    metric_key_prefix: str = DEFAULT_PREFIX
    rpc: str = ""
    addresses: List[LabeledAddress] = field(default_factory=list)
    tempfile: str = ""
    exporter: ExporterSettings = field(default_factory=ExporterSettings)


def make_labeled_address(raw: str, label: Optional[str] = None) -> LabeledAddress:
    """Validate one hex address and build its record.

    The address is accepted in any case and with or without the ``0x``
    prefix; no EIP-55 checksum is enforced. The lowercased input becomes
    the metric name and the default label.
    """
    if not isinstance(raw, str):
        raise InvalidAddressError(repr(raw))
    name = raw.lower()
    # lowercase input never looks checksummed, so only the hex shape is checked
    if not Web3.is_address(name):
        raise InvalidAddressError(raw)
    body = name[2:] if name.startswith("0x") else name
    return LabeledAddress(
        name=name,
        address=Web3.to_checksum_address("0x" + body),
        label=name if label is None else label,
    )


def parse_addresses(addresses: str) -> List[LabeledAddress]:
    """Parse a comma-separated ``address[:label]`` list.

    Entries are not trimmed and duplicates are kept. An entry with more
    than one ``:`` keeps its address and falls back to the default label.
    """
    ret = []
    for entry in addresses.split(","):
        parts = entry.split(":")
        label = parts[1] if len(parts) == 2 else None
        ret.append(make_labeled_address(parts[0], label))
    return ret


def _require_str(value: Any, what: str) -> str:
    # unquoted 0x... values are read by YAML as integers
    if not isinstance(value, str):
        raise ConfigError(f"{what} must be a quoted string, got {type(value).__name__}: {value!r}")
    return value


def _addresses_from_yaml(value: Any) -> List[LabeledAddress]:
    if isinstance(value, str):
        return parse_addresses(value)
    if not isinstance(value, list):
        raise ConfigError(f"addresses must be a string or a list, got {type(value).__name__}")

    ret = []
    for item in value:
        if isinstance(item, dict):
            if 'address' not in item:
                raise ConfigError(f"address entry without 'address' key: {item}")
            label = item.get('label')
            if label is not None:
                label = _require_str(label, "label")
            ret.append(make_labeled_address(_require_str(item['address'], "address"), label))
        else:
            ret.extend(parse_addresses(_require_str(item, "address")))
    return ret


def _int_setting(section: Dict[str, Any], key: str) -> int:
    try:
        return int(section[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"exporter.{key} must be an integer, got {section[key]!r}") from e


def load_config(config_path: str) -> Dict[str, Any]:
    """Read a YAML config file into a dict of settings overrides."""
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config {config_path} must be a mapping")

    logger.info(f"Loaded config from {config_path}")
    overrides: Dict[str, Any] = {}
    for key in ('metric_key_prefix', 'rpc', 'tempfile'):
        if config.get(key) is not None:
            overrides[key] = str(config[key])
    if config.get('addresses') is not None:
        overrides['addresses'] = _addresses_from_yaml(config['addresses'])

    exporter = config.get('exporter') or {}
    if not isinstance(exporter, dict):
        raise ConfigError("exporter section must be a mapping")
    if exporter.get('port') is not None:
        overrides['port'] = _int_setting(exporter, 'port')
    if exporter.get('scrape_interval') is not None:
        overrides['scrape_interval'] = _int_setting(exporter, 'scrape_interval')
    return overrides


def build_settings(cli: Dict[str, Any], file_overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """Merge command-line values over config file values over defaults.

    ``cli`` holds only the flags the operator actually passed (``None``
    means unset). Raises InvalidAddressError for a bad address list.
    """
    merged: Dict[str, Any] = dict(file_overrides or {})
    merged.update({k: v for k, v in cli.items() if v is not None})

    addresses = merged.get('addresses', DEFAULT_ADDRESSES)
    if isinstance(addresses, str):
        addresses = parse_addresses(addresses)

    return Settings(
        metric_key_prefix=merged.get('metric_key_prefix', DEFAULT_PREFIX),
        rpc=merged.get('rpc', ""),
        addresses=addresses,
        tempfile=merged.get('tempfile', ""),
        exporter=ExporterSettings(
            port=merged.get('port'),
            scrape_interval=merged.get('scrape_interval', DEFAULT_SCRAPE_INTERVAL),
        ),
    )
