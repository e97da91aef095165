import re
import socket

import pytest

from rlconfig.dogstatsd import DogStatsdSink, separate_tags
from rlconfig.mogrifier import MogrifierEntry, MogrifierMap

BASE = "ratelimit.service.rate_limit.mongo_cps.database_users.total_hits"


@pytest.fixture
def receiver():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2)
    yield sock
    sock.close()


def _custom_mogrifier():
    def handler(matches):
        return "custom." + matches[1], ["tag1:value1", "tag2:value2"]

    return MogrifierMap([MogrifierEntry(re.compile(r"^ratelimit\.(.*)$"), handler)])


@pytest.mark.parametrize(
    "metric, expect_name, expect_tags",
    [
        (BASE, BASE, []),
        (BASE + ".__COMMIT=12345", BASE, ["COMMIT:12345"]),
        (BASE + ".__COMMIT=12345.__DEPLOY=6890", BASE, ["COMMIT:12345", "DEPLOY:6890"]),
        (BASE + ".__COMMIT", BASE, []),
    ],
    ids=["no extra tags", "one extra tag", "two extra tags", "invalid extra tag no value"],
)
def test_separate_extra_tags(metric, expect_name, expect_tags):
    assert separate_tags(metric) == (expect_name, expect_tags)


@pytest.mark.parametrize(
    "metric, expect_name, expect_tags",
    [
        (
            BASE + ".__COMMIT=12345.__DEPLOY=67890",
            "custom.service.rate_limit.mongo_cps.database_users.total_hits",
            ["COMMIT:12345", "DEPLOY:67890", "tag1:value1", "tag2:value2"],
        ),
        (
            BASE,
            "custom.service.rate_limit.mongo_cps.database_users.total_hits",
            ["tag1:value1", "tag2:value2"],
        ),
        (
            "foo.service.rate_limit.mongo_cps.database_users.total_hits.__COMMIT=12345.__DEPLOY=67890",
            "foo.service.rate_limit.mongo_cps.database_users.total_hits",
            ["COMMIT:12345", "DEPLOY:67890"],
        ),
        ("other.metric.name", "other.metric.name", []),
    ],
    ids=["match with extra tags", "match without extra tags", "extra tags no match", "no mogrification"],
)
def test_sink_mogrify(receiver, metric, expect_name, expect_tags):
    port = receiver.getsockname()[1]
    with DogStatsdSink("127.0.0.1", port, _custom_mogrifier()) as sink:
        assert sink.mogrify(metric) == (expect_name, expect_tags)


def test_flush_counter_sends_packet(receiver):
    port = receiver.getsockname()[1]
    metric = "ratelimit.hits.__COMMIT=1"
    with DogStatsdSink("127.0.0.1", port, _custom_mogrifier()) as sink:
        mogrified = sink.mogrify(metric)
        sink.flush_counter(metric, 3)
        data = receiver.recv(1024)
    assert mogrified == ("custom.hits", ["COMMIT:1", "tag1:value1", "tag2:value2"])
    assert data == b"custom.hits:3|c|#COMMIT:1,tag1:value1,tag2:value2"


def test_flush_gauge_without_tags(receiver):
    port = receiver.getsockname()[1]
    with DogStatsdSink("127.0.0.1", port) as sink:
        mogrified = sink.mogrify("some.gauge")
        sink.flush_gauge("some.gauge", 5)
        data = receiver.recv(1024)
    assert mogrified == ("some.gauge", [])
    assert data == b"some.gauge:5|g"


def test_flush_timer_truncates_to_milliseconds(receiver):
    port = receiver.getsockname()[1]
    metric = "some.timer.__ENV=dev"
    with DogStatsdSink("127.0.0.1", port) as sink:
        mogrified = sink.mogrify(metric)
        sink.flush_timer(metric, 12.7)
        data = receiver.recv(1024)
    assert mogrified == ("some.timer", ["ENV:dev"])
    assert data == b"some.timer:12|ms|#ENV:dev"


def test_close_closes_socket(receiver):
    port = receiver.getsockname()[1]
    sink = DogStatsdSink("127.0.0.1", port)
    sink.close()
    assert sink._socket.fileno() == -1