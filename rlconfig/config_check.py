"""Command that checks a directory of rate limit configuration files."""

from __future__ import annotations

import argparse
import os
from typing import Iterable, Sequence

from rlconfig.config import (
    RateLimitConfig,
    RateLimitConfigError,
    RateLimitConfigToLoad,
    StatsManager,
    config_file_content_to_yaml,
    load_rate_limit_config,
)


def load_configs(
    all_configs: Iterable[RateLimitConfigToLoad], merge_domain_configs: bool = False
) -> RateLimitConfig:
    """Load the parsed files into one configuration, raising RateLimitConfigError."""
    return load_rate_limit_config(all_configs, StatsManager(), merge_domain_configs)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check rate limit configuration files.")
    parser.add_argument(
        "-config_dir",
        "--config_dir",
        dest="config_dir",
        default="",
        help="path to directory containing rate limit configs",
    )
    parser.add_argument(
        "-merge_domain_configs",
        "--merge_domain_configs",
        dest="merge_domain_configs",
        action="store_true",
        help="whether to merge configurations, referencing the same domain",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Check every file in the configured directory; return the process exit code."""
    args = _parser().parse_args(argv)
    config_dir = args.config_dir
    print("checking rate limit configs...")
    print(f"loading config directory: {config_dir}")

    try:
        names = sorted(os.listdir(config_dir))
    except OSError as exc:
        print(f"error opening directory {config_dir}: {exc}")
        return 1

    all_configs = []
    for file_name in names:
        final_path = os.path.join(config_dir, file_name)
        print(f"opening config file: {final_path}")
        try:
            with open(final_path, encoding="utf-8") as handle:
                content = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            print(f"error reading file {final_path}: {exc}")
            return 1
        try:
            config_yaml = config_file_content_to_yaml(final_path, content)
        except RateLimitConfigError as exc:
            print(f"error loading rate limit configs: {exc}")
            return 1
        all_configs.append(RateLimitConfigToLoad(name=final_path, config_yaml=config_yaml))

    try:
        load_configs(all_configs, args.merge_domain_configs)
    except RateLimitConfigError as exc:
        print(f"error loading rate limit configs: {exc}")
        return 1

    print("all rate limit configs ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())