"""Rate limit configuration: YAML loading, validation and descriptor lookup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Iterable, Mapping

import yaml

logger = logging.getLogger(__name__)

_UINT32_MAX = 2**32 - 1

_VALID_KEYS = frozenset(
    {
        "domain",
        "key",
        "value",
        "descriptors",
        "rate_limit",
        "unit",
        "requests_per_unit",
        "unlimited",
        "shadow_mode",
        "name",
        "replaces",
        "detailed_metric",
    }
)


class RateLimitConfigError(Exception):
    """Raised when a rate limit configuration cannot be loaded."""


def _config_error(name: str, message: str) -> RateLimitConfigError:
    return RateLimitConfigError(f"{name}: {message}")


class Unit(IntEnum):
    """Time unit of a rate limit."""

    UNKNOWN = 0
    SECOND = 1
    MINUTE = 2
    HOUR = 3
    DAY = 4
    MONTH = 5
    YEAR = 6


@dataclass
class Counter:
    """A named, monotonically increasing counter."""

    name: str
    value: int = 0

    def inc(self) -> None:
        self.value += 1


@dataclass
class RateLimitStats:
    """Counters kept for one rate limit key."""

    key: str
    total_hits: Counter
    over_limit: Counter
    near_limit: Counter
    over_limit_with_local_cache: Counter
    within_limit: Counter
    shadow_mode: Counter


@dataclass
class DomainStats:
    """Counters kept for one domain."""

    not_found: Counter


class StatsManager:
    """A store of counters, shared by name, that builds per-limit and per-domain stats."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}

    def counter(self, name: str) -> Counter:
        """Return the counter with this name, creating it at zero if needed."""
        found = self._counters.get(name)
        if found is None:
            found = self._counters[name] = Counter(name)
        return found

    def new_stats(self, key: str) -> RateLimitStats:
        return RateLimitStats(
            key=key,
            total_hits=self.counter(f"{key}.total_hits"),
            over_limit=self.counter(f"{key}.over_limit"),
            near_limit=self.counter(f"{key}.near_limit"),
            over_limit_with_local_cache=self.counter(f"{key}.over_limit_with_local_cache"),
            within_limit=self.counter(f"{key}.within_limit"),
            shadow_mode=self.counter(f"{key}.shadow_mode"),
        )

    def new_domain_stats(self, domain: str) -> DomainStats:
        return DomainStats(not_found=self.counter(f"{domain}.domain_not_found"))


@dataclass
class RateLimitPolicy:
    """The limit as reported back to callers."""

    requests_per_unit: int = 0
    unit: Unit = Unit.UNKNOWN
    name: str = ""


@dataclass
class RateLimit:
    """One configured limit together with its stats."""

    full_key: str
    stats: RateLimitStats
    limit: RateLimitPolicy
    unlimited: bool = False
    shadow_mode: bool = False
    name: str = ""
    replaces: list[str] = field(default_factory=list)
    detailed_metric: bool = False


@dataclass
class YamlReplaces:
    name: str = ""


@dataclass
class YamlRateLimit:
    requests_per_unit: int = 0
    unit: str = ""
    unlimited: bool = False
    name: str = ""
    replaces: list[YamlReplaces] = field(default_factory=list)


@dataclass
class YamlDescriptor:
    key: str = ""
    value: str = ""
    rate_limit: YamlRateLimit | None = None
    descriptors: list[YamlDescriptor] = field(default_factory=list)
    shadow_mode: bool = False
    detailed_metric: bool = False


@dataclass
class YamlRoot:
    domain: str = ""
    descriptors: list[YamlDescriptor] = field(default_factory=list)


@dataclass
class DescriptorEntry:
    key: str
    value: str = ""


@dataclass
class LimitOverride:
    requests_per_unit: int
    unit: Unit


@dataclass
class Descriptor:
    """A request descriptor: an ordered list of entries and an optional limit override."""

    entries: list[DescriptorEntry] = field(default_factory=list)
    limit: LimitOverride | None = None


@dataclass
class RateLimitConfigToLoad:
    """A named configuration file to load into the aggregate configuration."""

    name: str
    config_yaml: YamlRoot


def new_rate_limit(
    requests_per_unit: int,
    unit: Unit,
    stats: RateLimitStats,
    unlimited: bool = False,
    shadow_mode: bool = False,
    name: str = "",
    replaces: Iterable[str] | None = None,
    detailed_metric: bool = False,
) -> RateLimit:
    """Create a rate limit entry keyed by its stats key."""
    return RateLimit(
        full_key=stats.key,
        stats=stats,
        limit=RateLimitPolicy(requests_per_unit=requests_per_unit, unit=Unit(unit), name=name),
        unlimited=unlimited,
        shadow_mode=shadow_mode,
        name=name,
        replaces=list(replaces or []),
        detailed_metric=detailed_metric,
    )


@dataclass
class _Node:
    descriptors: dict[str, _Node] = field(default_factory=dict)
    limit: RateLimit | None = None
    wildcard_keys: list[str] = field(default_factory=list)

    def dump(self) -> str:
        out = ""
        if self.limit is not None:
            out += (
                f"{self.limit.full_key}: unit={self.limit.limit.unit.name} "
                f"requests_per_unit={self.limit.limit.requests_per_unit}, "
                f"shadow_mode: {str(self.limit.shadow_mode).lower()}\n"
            )
        for child in self.descriptors.values():
            out += child.dump()
        return out


def _descriptor_key(domain: str, descriptor: Descriptor) -> str:
    parts = [
        f"{entry.key}_{entry.value}" if entry.value else entry.key
        for entry in descriptor.entries
    ]
    return f"{domain}.{'.'.join(parts)}"


class RateLimitConfig:
    """A loaded set of domains, each a tree of descriptors with optional limits."""

    def __init__(self, stats_manager: StatsManager, merge_domain_configs: bool = False) -> None:
        self._domains: dict[str, _Node] = {}
        self._stats_manager = stats_manager
        self._merge_domain_configs = merge_domain_configs

    def load(self, config: RateLimitConfigToLoad) -> None:
        """Load one configuration file into this configuration."""
        root = config.config_yaml
        if not root.domain:
            raise _config_error(config.name, "config file cannot have empty domain")

        existing = self._domains.get(root.domain)
        if existing is not None:
            if not self._merge_domain_configs:
                raise _config_error(
                    config.name, f"duplicate domain '{root.domain}' in config file"
                )
            logger.debug("patching domain: %s", root.domain)
            self._load_descriptors(existing, config.name, root.domain + ".", root.descriptors)
            return

        logger.debug("loading domain: %s", root.domain)
        node = _Node()
        self._load_descriptors(node, config.name, root.domain + ".", root.descriptors)
        self._domains[root.domain] = node

    def _load_descriptors(
        self,
        node: _Node,
        config_name: str,
        parent_key: str,
        descriptors: Iterable[YamlDescriptor],
    ) -> None:
        for item in descriptors:
            if not item.key:
                raise _config_error(config_name, "descriptor has empty key")

            final_key = f"{item.key}_{item.value}" if item.value else item.key
            new_parent_key = parent_key + final_key
            if final_key in node.descriptors:
                raise _config_error(
                    config_name, f"duplicate descriptor composite key '{new_parent_key}'"
                )

            rate_limit = None
            if item.rate_limit is not None:
                policy = item.rate_limit
                unit = Unit.__members__.get(policy.unit.upper(), Unit.UNKNOWN)
                valid_unit = unit is not Unit.UNKNOWN
                if policy.unlimited:
                    if valid_unit:
                        raise _config_error(
                            config_name, "should not specify rate limit unit when unlimited"
                        )
                elif not valid_unit:
                    raise _config_error(
                        config_name, f"invalid rate limit unit '{policy.unit}'"
                    )

                rate_limit = new_rate_limit(
                    policy.requests_per_unit,
                    unit,
                    self._stats_manager.new_stats(new_parent_key),
                    policy.unlimited,
                    item.shadow_mode,
                    policy.name,
                    [entry.name for entry in policy.replaces],
                    item.detailed_metric,
                )
                for entry in policy.replaces:
                    if not entry.name:
                        raise _config_error(
                            config_name, "should not have an empty replaces entry"
                        )
                    if entry.name == policy.name:
                        raise _config_error(
                            config_name, "replaces should not contain name of same descriptor"
                        )

            logger.debug("loading descriptor: key=%s limit=%s", new_parent_key, rate_limit)
            child = _Node(limit=rate_limit)
            self._load_descriptors(child, config_name, new_parent_key + ".", item.descriptors)
            node.descriptors[final_key] = child
            if final_key.endswith("*"):
                node.wildcard_keys.append(final_key)

    def dump(self) -> str:
        """Describe every configured limit, one per line."""
        return "".join(node.dump() for node in self._domains.values())

    def is_empty_domains(self) -> bool:
        return not self._domains

    def get_limit(self, domain: str, descriptor: Descriptor) -> RateLimit | None:
        """Return the limit that applies to the descriptor, or None."""
        node = self._domains.get(domain)
        if node is None:
            logger.debug("unknown domain '%s'", domain)
            self._stats_manager.new_domain_stats(domain).not_found.inc()
            return None

        if descriptor.limit is not None:
            # Overrides from the caller never run in shadow mode.
            return new_rate_limit(
                descriptor.limit.requests_per_unit,
                Unit(descriptor.limit.unit),
                self._stats_manager.new_stats(_descriptor_key(domain, descriptor)),
                False,
                False,
                "",
                [],
                False,
            )

        rate_limit: RateLimit | None = None
        current = node
        detailed_key = [domain]
        last = len(descriptor.entries) - 1

        for index, entry in enumerate(descriptor.entries):
            final_key = f"{entry.key}_{entry.value}"
            detailed_key.append(final_key)

            logger.debug("looking up key: %s", final_key)
            found = current.descriptors.get(final_key)

            if found is None:
                for wildcard in current.wildcard_keys:
                    if final_key.startswith(wildcard[:-1]):
                        found = current.descriptors.get(wildcard)
                        break

            if found is None:
                final_key = entry.key
                logger.debug("looking up key: %s", final_key)
                found = current.descriptors.get(final_key)

            if found is not None and found.limit is not None:
                logger.debug("found rate limit: %s", final_key)
                if index == last:
                    rate_limit = found.limit
                else:
                    logger.debug("request has more entries than the matched config depth")

            if found is not None and found.descriptors:
                current = found
                continue

            if rate_limit is not None and rate_limit.detailed_metric:
                rate_limit = replace(
                    rate_limit,
                    stats=self._stats_manager.new_stats(rate_limit.full_key),
                    limit=replace(rate_limit.limit),
                    replaces=list(rate_limit.replaces),
                )
            break

        if rate_limit is not None and rate_limit.detailed_metric:
            rate_limit.stats = self._stats_manager.new_stats(".".join(detailed_key))

        return rate_limit


def load_rate_limit_config(
    configs: Iterable[RateLimitConfigToLoad],
    stats_manager: StatsManager,
    merge_domain_configs: bool = False,
) -> RateLimitConfig:
    """Build a configuration from a list of parsed files, raising RateLimitConfigError."""
    config = RateLimitConfig(stats_manager, merge_domain_configs)
    for item in configs:
        config.load(item)
    return config


# --- YAML parsing -----------------------------------------------------------


class _Loader(yaml.SafeLoader):
    """Safe loader that leaves timestamps as plain strings."""


_Loader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class _DecodeError(ValueError):
    pass


def _go_repr(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "[" + " ".join(_go_repr(v) for v in value) + "]"
    if isinstance(value, dict):
        return "map[" + " ".join(f"{_go_repr(k)}:{_go_repr(v)}" for k, v in value.items()) + "]"
    return str(value)


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "!!bool"
    if isinstance(value, int):
        return "!!int"
    if isinstance(value, float):
        return "!!float"
    if isinstance(value, str):
        return "!!str"
    if isinstance(value, list):
        return "!!seq"
    if isinstance(value, dict):
        return "!!map"
    return type(value).__name__


def _validate_keys(file_name: str, mapping: Mapping[Any, Any]) -> None:
    for key, value in mapping.items():
        if not isinstance(key, str):
            text = f"config error, key is not of type string: {_go_repr(key)}"
            logger.debug(text)
            raise _config_error(file_name, text)
        if key not in _VALID_KEYS:
            text = f"config error, unknown key '{key}'"
            logger.debug(text)
            raise _config_error(file_name, text)
        if isinstance(value, list):
            for element in value:
                if not isinstance(element, dict):
                    text = (
                        "config error, yaml file contains list of type other than map: "
                        f"{_go_repr(element)}"
                    )
                    logger.debug(text)
                    raise _config_error(file_name, text)
                _validate_keys(file_name, element)
        elif isinstance(value, dict):
            _validate_keys(file_name, value)
        elif value is None or isinstance(value, (str, bool, int)):
            continue
        else:
            text = "error checking config"
            logger.debug(text)
            raise _config_error(file_name, text)


def _string(value: Any, name: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise _DecodeError(f"cannot unmarshal {_kind(value)} into {name} of type string")


def _uint32(value: Any, name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= _UINT32_MAX:
        return value
    raise _DecodeError(f"cannot unmarshal {_kind(value)} `{_go_repr(value)}` into {name} of type uint32")


def _boolean(value: Any, name: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise _DecodeError(f"cannot unmarshal {_kind(value)} `{_go_repr(value)}` into {name} of type bool")


def _sequence(value: Any, name: str) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    raise _DecodeError(f"cannot unmarshal {_kind(value)} into {name} of type list")


def _mapping(value: Any, name: str) -> dict:
    if isinstance(value, dict):
        return value
    raise _DecodeError(f"cannot unmarshal {_kind(value)} into {name} of type map")


def _decode_rate_limit(data: Any) -> YamlRateLimit | None:
    if data is None:
        return None
    data = _mapping(data, "rate_limit")
    return YamlRateLimit(
        requests_per_unit=_uint32(data.get("requests_per_unit"), "requests_per_unit"),
        unit=_string(data.get("unit"), "unit"),
        unlimited=_boolean(data.get("unlimited"), "unlimited"),
        name=_string(data.get("name"), "name"),
        replaces=[
            YamlReplaces(name=_string(_mapping(item, "replaces").get("name"), "name"))
            for item in _sequence(data.get("replaces"), "replaces")
        ],
    )


def _decode_descriptors(data: Any) -> list[YamlDescriptor]:
    result = []
    for item in _sequence(data, "descriptors"):
        item = _mapping(item, "descriptors")
        result.append(
            YamlDescriptor(
                key=_string(item.get("key"), "key"),
                value=_string(item.get("value"), "value"),
                rate_limit=_decode_rate_limit(item.get("rate_limit")),
                descriptors=_decode_descriptors(item.get("descriptors")),
                shadow_mode=_boolean(item.get("shadow_mode"), "shadow_mode"),
                detailed_metric=_boolean(item.get("detailed_metric"), "detailed_metric"),
            )
        )
    return result


def config_file_content_to_yaml(file_name: str, content: str) -> YamlRoot:
    """Parse and validate one YAML configuration file, raising RateLimitConfigError."""

    def fail(reason: str) -> RateLimitConfigError:
        text = f"error loading config file: {reason}"
        logger.debug(text)
        return _config_error(file_name, text)

    try:
        data = yaml.load(content, Loader=_Loader)
    except yaml.YAMLError as exc:
        raise fail(str(exc).replace("\n", " ")) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise fail(f"cannot unmarshal {_kind(data)} into a mapping")

    _validate_keys(file_name, data)

    try:
        return YamlRoot(
            domain=_string(data.get("domain"), "domain"),
            descriptors=_decode_descriptors(data.get("descriptors")),
        )
    except _DecodeError as exc:
        raise fail(str(exc)) from exc


# --- xDS conversion ---------------------------------------------------------


def _field(data: Mapping[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def _unit_name(unit: Any) -> str:
    if unit is None:
        return Unit.UNKNOWN.name
    if isinstance(unit, Unit):
        return unit.name
    if isinstance(unit, int):
        return Unit(unit).name
    return str(unit)


def _xds_policy(data: Mapping[str, Any] | None) -> YamlRateLimit | None:
    if data is None:
        return None
    return YamlRateLimit(
        requests_per_unit=int(_field(data, "requests_per_unit", "requestsPerUnit", 0)),
        unit=_unit_name(data.get("unit")),
        unlimited=bool(data.get("unlimited", False)),
        name=data.get("name", "") or "",
        replaces=[YamlReplaces(name=r.get("name", "") or "") for r in data.get("replaces") or []],
    )


def _xds_descriptors(items: Iterable[Mapping[str, Any]] | None) -> list[YamlDescriptor]:
    return [
        YamlDescriptor(
            key=item.get("key", "") or "",
            value=item.get("value", "") or "",
            rate_limit=_xds_policy(_field(item, "rate_limit", "rateLimit")),
            descriptors=_xds_descriptors(item.get("descriptors")),
            shadow_mode=bool(_field(item, "shadow_mode", "shadowMode", False)),
            detailed_metric=bool(_field(item, "detailed_metric", "detailedMetric", False)),
        )
        for item in items or []
    ]


def config_from_xds(xds_config: Mapping[str, Any]) -> YamlRoot:
    """Convert an xDS rate limit config resource, given as a mapping, to a YamlRoot."""
    return YamlRoot(
        domain=xds_config.get("domain", "") or "",
        descriptors=_xds_descriptors(xds_config.get("descriptors")),
    )