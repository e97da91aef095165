# rlconfig

Load, validate and query rate limit descriptor configurations, and turn
internal metric names into DogStatsD names and tags.

## Installation

```
pip install .
```

## Checking a directory of configuration files

Every file in the directory (in sorted order) is parsed as a YAML rate limit
configuration and the whole set is loaded together. Any error is printed and
the command exits with status 1; on success it prints
`all rate limit configs ok` and exits with status 0.

```
rlconfig-check --config_dir ./ratelimit-configs
rlconfig-check --config_dir ./ratelimit-configs --merge_domain_configs
```

With `--merge_domain_configs`, several files naming the same domain are merged
instead of rejected. The single-dash forms `-config_dir` and
`-merge_domain_configs` are accepted as well.

## Configuration format

```yaml
domain: test-domain
descriptors:
  - key: key1
    value: value1
    descriptors:
      - key: subkey1
        rate_limit:
          unit: second
          requests_per_unit: 5
  - key: key2
    rate_limit:
      unit: minute
      requests_per_unit: 20
    shadow_mode: true
  - key: wild
    value: foo*
    rate_limit:
      unlimited: true
```

Recognised keys are `domain`, `key`, `value`, `descriptors`, `rate_limit`,
`unit`, `requests_per_unit`, `unlimited`, `shadow_mode`, `name`, `replaces`
and `detailed_metric`; any other key is an error. Units are `second`,
`minute`, `hour`, `day`, `month` and `year` (case does not matter). An
unlimited limit must not name a unit. A value ending in `*` matches any
request value with that prefix. A descriptor without a value matches any
value of its key when no more specific entry exists.

## Library use

```python
from rlconfig.config import (
    Descriptor, DescriptorEntry, RateLimitConfigToLoad, StatsManager,
    config_file_content_to_yaml, load_rate_limit_config,
)

with open("limits.yaml", encoding="utf-8") as handle:
    root = config_file_content_to_yaml("limits.yaml", handle.read())

stats = StatsManager()
config = load_rate_limit_config(
    [RateLimitConfigToLoad("limits.yaml", root)], stats, False
)

limit = config.get_limit(
    "test-domain",
    Descriptor([DescriptorEntry("key2", "anything")]),
)
if limit is not None:
    print(limit.limit.requests_per_unit, limit.limit.unit.name)
    limit.stats.total_hits.inc()

print(stats.counter("test-domain.key2.total_hits").value)
print(config.dump())
```

`get_limit` returns `None` when nothing matches; an unknown domain also
increments the `<domain>.domain_not_found` counter. A `Descriptor` may carry a
`LimitOverride`, which is returned as the limit instead of the configured one.
`is_empty_domains()` tells whether any domain was loaded.

Errors in a configuration raise `RateLimitConfigError`, whose message starts
with the name of the offending file.

`config_from_xds` converts an xDS rate limit config resource, given as a plain
mapping (snake_case or camelCase field names), into a `YamlRoot` that can be
loaded the same way.

## DogStatsD metric names

`rlconfig.dogstatsd.separate_tags` splits tags that were encoded into a metric
name (`name.__KEY=value`) back out as `KEY:value`. `DogStatsdSink(host, port,
mogrifier)` sends counters, gauges and timers over UDP after applying
mogrifiers; it can be used as a context manager and is closed with `close()`.

A `MogrifierMap` holds ordered regex rules; the first rule that matches a name
rewrites it and adds tags. Rules can be added with `MogrifierMap.add`, or read
from the environment with `rlconfig.mogrifier.mogrifier_map_from_env(keys)`,
using the variables `DOG_STATSD_MOGRIFIER_<KEY>_PATTERN`, `..._NAME` and
`..._TAGS` (`tag:$1,other:$2`). `$0`, `$1`, ... are replaced with the regex
match and its groups. Bad settings raise `MogrifierError`.

## What this package does not do

It does not run a rate limit service: there is no server, no request
counting against a cache or database, and no client to fetch configurations
from a management server. It loads, checks and queries configurations, keeps
counters in memory, and sends metrics to DogStatsD.