"""A stats sink that sends metrics to a DogStatsD agent over UDP."""

from __future__ import annotations

import logging
import socket

from rlconfig.mogrifier import MogrifierMap

logger = logging.getLogger(__name__)

_TAG_PREFIX = ".__"
_TAG_SEP = "="


def separate_tags(name: str) -> tuple[str, list[str]]:
    """Split a serialized metric name into its short name and "key:value" tags.

    "a.b.__COMMIT=1.__DEPLOY=2" becomes ("a.b", ["COMMIT:1", "DEPLOY:2"]).
    """
    short_name, found, tag_string = name.partition(_TAG_PREFIX)
    if not found:
        return name, []

    tags = []
    for tag_pair in tag_string.split(_TAG_PREFIX):
        tag_name, valid, tag_value = tag_pair.partition(_TAG_SEP)
        if not valid:
            logger.debug(
                "dogstatsd sink found malformed extra tag: %s, string: %s", tag_pair, name
            )
            continue
        tags.append(f"{tag_name}:{tag_value}")
    return short_name, tags


def _format_number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


class DogStatsdSink:
    """Flushes counters, gauges and timers to DogStatsD, rewriting names through a mogrifier."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8125,
        mogrifier: MogrifierMap | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.mogrifier = mogrifier if mogrifier is not None else MogrifierMap()
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._socket.connect((host, port))

    def __enter__(self) -> "DogStatsdSink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def mogrify(self, name: str) -> tuple[str, list[str]]:
        """Return the output metric name and tags, serialized tags first."""
        name, extra_tags = separate_tags(name)
        name, tags = self.mogrifier.mogrify(name)
        return name, extra_tags + tags

    def _send(self, name: str, value: str, kind: str, tags: list[str]) -> None:
        packet = f"{name}:{value}|{kind}"
        if tags:
            packet += "|#" + ",".join(tags)
        try:
            self._socket.send(packet.encode("utf-8"))
        except OSError as exc:
            logger.debug("dogstatsd sink failed to send %r: %s", packet, exc)

    def flush_counter(self, name: str, value: int) -> None:
        name, tags = self.mogrify(name)
        self._send(name, _format_number(int(value)), "c", tags)

    def flush_gauge(self, name: str, value: int) -> None:
        name, tags = self.mogrify(name)
        self._send(name, _format_number(float(value)), "g", tags)

    def flush_timer(self, name: str, milliseconds: float) -> None:
        name, tags = self.mogrify(name)
        # Durations are whole milliseconds.
        self._send(name, _format_number(int(milliseconds)), "ms", tags)

    def close(self) -> None:
        self._socket.close()