"""Ordered regex rules that rewrite metric names into a name plus tags."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Mapping

ENV_PREFIX = "DOG_STATSD_MOGRIFIER"

_VAR_FINDER = re.compile(r"\$\d+")

Handler = Callable[[list[str]], "tuple[str, list[str]]"]


class MogrifierError(ValueError):
    """Raised when a mogrifier cannot be built from its settings."""


@dataclass(frozen=True)
class MogrifierEntry:
    """A matcher deciding whether the rule applies, and a handler producing name and tags."""

    matcher: re.Pattern
    handler: Handler


class MogrifierMap:
    """An ordered collection of mogrifier entries; the first matching entry wins."""

    def __init__(self, entries: Iterable[MogrifierEntry] = ()) -> None:
        self.entries: list[MogrifierEntry] = list(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[MogrifierEntry]:
        return iter(self.entries)

    def add(self, matcher: re.Pattern | str, handler: Handler) -> None:
        """Append a rule, compiling the matcher if it is given as a string."""
        if isinstance(matcher, str):
            matcher = re.compile(matcher)
        self.entries.append(MogrifierEntry(matcher, handler))

    def mogrify(self, name: str) -> tuple[str, list[str]]:
        """Apply the first rule whose matcher finds the name; otherwise return it unchanged."""
        for entry in self.entries:
            match = entry.matcher.search(name)
            if match is None:
                continue
            matches = [match.group(0)] + [group or "" for group in match.groups()]
            new_name, tags = entry.handler(matches)
            return new_name, list(tags)
        return name, []


def make_pattern_handler(pattern: str) -> Callable[[list[str]], str]:
    """Return a function that fills $0, $1, ... in the pattern from a list of matches."""

    def handler(matches: list[str]) -> str:
        def substitute(found: re.Match) -> str:
            placeholder = found.group(0)
            index = int(placeholder[1:])
            if index >= len(matches):
                return placeholder
            return matches[index]

        return _VAR_FINDER.sub(substitute, pattern)

    return handler


def _parse_tag_map(value: str) -> dict[str, str]:
    tags: dict[str, str] = {}
    if not value.strip():
        return tags
    for pair in value.split(","):
        parts = pair.split(":")
        if len(parts) != 2:
            raise ValueError(f"invalid map item: {pair!r}")
        tags[parts[0]] = parts[1]
    return tags


def _build_entry(
    matcher: re.Pattern, name_pattern: str, tag_patterns: dict[str, str]
) -> MogrifierEntry:
    name_handler = make_pattern_handler(name_pattern)
    tag_handlers = {key: make_pattern_handler(value) for key, value in tag_patterns.items()}

    def handler(matches: list[str]) -> tuple[str, list[str]]:
        tags = [f"{key}:{tag_handler(matches)}" for key, tag_handler in tag_handlers.items()]
        return name_handler(matches), tags

    return MogrifierEntry(matcher, handler)


def mogrifier_map_from_env(
    keys: Iterable[str], environ: Mapping[str, str] | None = None
) -> MogrifierMap:
    """Build a mogrifier map from DOG_STATSD_MOGRIFIER_<KEY>_{PATTERN,NAME,TAGS} variables."""
    env = os.environ if environ is None else environ
    mogrifiers = MogrifierMap()

    for mogrifier in keys:
        prefix = f"{ENV_PREFIX}_{mogrifier}".upper()
        pattern = env.get(f"{prefix}_PATTERN", "")
        name = env.get(f"{prefix}_NAME", "")
        try:
            tag_patterns = _parse_tag_map(env.get(f"{prefix}_TAGS", ""))
        except ValueError as exc:
            raise MogrifierError(f"failed to load mogrifier {mogrifier}: {exc}") from exc

        if not pattern:
            raise MogrifierError(f"no PATTERN specified for mogrifier {mogrifier}")
        try:
            matcher = re.compile(pattern)
        except re.error as exc:
            raise MogrifierError(
                f"failed to compile pattern for {mogrifier}: {pattern}: {exc}"
            ) from exc

        if not name:
            raise MogrifierError(f"no NAME specified for mogrifier {mogrifier}")

        for key, value in tag_patterns.items():
            if not key:
                raise MogrifierError(
                    f"no key specified for tag {key} for mogrifier {mogrifier}"
                )
            if not value:
                raise MogrifierError(
                    f"no value specified for tag {key} for mogrifier {mogrifier}"
                )

        mogrifiers.entries.append(_build_entry(matcher, name, tag_patterns))

    return mogrifiers