import os

import pytest

from rlconfig.config import (
    Descriptor,
    DescriptorEntry,
    RateLimitConfigError,
    RateLimitConfigToLoad,
    Unit,
    config_file_content_to_yaml,
)
from rlconfig.config_check import load_configs, main

KEY1 = """\
domain: test-domain
descriptors:
  - key: key1
    value: value1
    rate_limit:
      unit: minute
      requests_per_unit: 10
"""

KEY2 = """\
domain: test-domain
descriptors:
  - key: key2
    value: value2
    rate_limit:
      unit: minute
      requests_per_unit: 20
"""


def _write(directory, name, content):
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return str(path)


def _to_load(name, content):
    return RateLimitConfigToLoad(name=name, config_yaml=config_file_content_to_yaml(name, content))


def test_load_configs_returns_working_config():
    config = load_configs([_to_load("a.yaml", KEY1)], False)
    limit = config.get_limit(
        "test-domain", Descriptor(entries=[DescriptorEntry("key1", "value1")])
    )
    assert limit.limit.requests_per_unit == 10
    assert limit.limit.unit == Unit.MINUTE


def test_load_configs_duplicate_domain_raises():
    with pytest.raises(RateLimitConfigError) as info:
        load_configs([_to_load("a.yaml", KEY1), _to_load("b.yaml", KEY2)], False)
    assert str(info.value) == "b.yaml: duplicate domain 'test-domain' in config file"


def test_load_configs_merge_domains():
    config = load_configs([_to_load("a.yaml", KEY1), _to_load("b.yaml", KEY2)], True)
    limit = config.get_limit(
        "test-domain", Descriptor(entries=[DescriptorEntry("key2", "value2")])
    )
    assert limit.limit.requests_per_unit == 20


def test_main_ok(tmp_path, capsys):
    path = _write(tmp_path, "a.yaml", KEY1)
    assert main(["-config_dir", str(tmp_path)]) == 0
    out = capsys.readouterr().out
    assert out.splitlines() == [
        "checking rate limit configs...",
        f"loading config directory: {tmp_path}",
        f"opening config file: {path}",
        "all rate limit configs ok",
    ]


def test_main_duplicate_domain_fails(tmp_path, capsys):
    _write(tmp_path, "a.yaml", KEY1)
    second = _write(tmp_path, "b.yaml", KEY2)
    assert main(["--config_dir", str(tmp_path)]) == 1
    out = capsys.readouterr().out
    assert (
        f"error loading rate limit configs: {second}: duplicate domain 'test-domain' in config file"
        in out
    )
    assert "all rate limit configs ok" not in out


def test_main_merge_domains(tmp_path, capsys):
    _write(tmp_path, "a.yaml", KEY1)
    _write(tmp_path, "b.yaml", KEY2)
    assert main(["-config_dir", str(tmp_path), "-merge_domain_configs"]) == 0
    assert "all rate limit configs ok" in capsys.readouterr().out


def test_main_missing_directory(tmp_path, capsys):
    missing = os.path.join(str(tmp_path), "absent")
    assert main(["-config_dir", missing]) == 1
    assert f"error opening directory {missing}:" in capsys.readouterr().out


def test_main_unknown_key(tmp_path, capsys):
    path = _write(tmp_path, "bad.yaml", "domain: d\nratelimit: 1\n")
    assert main(["-config_dir", str(tmp_path)]) == 1
    assert (
        f"{path}: config error, unknown key 'ratelimit'" in capsys.readouterr().out
    )


def test_main_empty_domain(tmp_path, capsys):
    path = _write(tmp_path, "empty.yaml", "descriptors: []\n")
    assert main(["-config_dir", str(tmp_path)]) == 1
    assert f"{path}: config file cannot have empty domain" in capsys.readouterr().out


def test_main_files_opened_in_sorted_order(tmp_path, capsys):
    b = _write(tmp_path, "b.yaml", KEY2)
    a = _write(tmp_path, "a.yaml", KEY1)
    assert main(["-config_dir", str(tmp_path), "-merge_domain_configs"]) == 0
    out = capsys.readouterr().out
    assert out.index(f"opening config file: {a}") < out.index(f"opening config file: {b}")