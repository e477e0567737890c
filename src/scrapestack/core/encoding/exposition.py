"""Text exposition format codec.

Parses the line-oriented text format served by metrics exporters
(``name{label="value",...} value [timestamp]``) and encodes samples back
into it. Also parses the label selectors accepted by the query API, which
share the same ``name{label="value"}`` syntax.
"""

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from scrapestack.core.errors import SelectorError
from scrapestack.core.models import Sample

_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")

_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}


class _LineError(ValueError):
    """Internal signal that a line is malformed."""


@dataclass
class ExpositionResult:
    """Samples parsed from one exposition body.

    Attributes:
        samples: Parsed samples, stamped with the scrape timestamp.
        skipped: Number of non-comment lines that could not be parsed.
    """

    samples: list[Sample] = field(default_factory=list)
    skipped: int = 0


def _parse_labels(text: str, pos: int) -> tuple[dict[str, str], int]:
    """Parse a ``{...}`` label block starting at ``text[pos] == "{"``.

    Returns:
        The labels and the index just past the closing brace.
    """
    labels: dict[str, str] = {}
    pos += 1
    length = len(text)
    while True:
        while pos < length and text[pos] in " \t":
            pos += 1
        if pos < length and text[pos] == "}":
            return labels, pos + 1
        match = _LABEL_NAME.match(text, pos)
        if match is None:
            raise _LineError(f"invalid label name at column {pos}")
        name = match.group(0)
        pos = match.end()
        while pos < length and text[pos] in " \t":
            pos += 1
        if pos >= length or text[pos] != "=":
            raise _LineError(f"expected '=' after label {name!r}")
        pos += 1
        while pos < length and text[pos] in " \t":
            pos += 1
        if pos >= length or text[pos] != '"':
            raise _LineError(f"expected quoted value for label {name!r}")
        pos += 1
        chars: list[str] = []
        while True:
            if pos >= length:
                raise _LineError(f"unterminated value for label {name!r}")
            char = text[pos]
            if char == "\\":
                if pos + 1 >= length or text[pos + 1] not in _ESCAPES:
                    raise _LineError(f"invalid escape in label {name!r}")
                chars.append(_ESCAPES[text[pos + 1]])
                pos += 2
                continue
            if char == '"':
                pos += 1
                break
            chars.append(char)
            pos += 1
        if name in labels:
            raise _LineError(f"duplicate label {name!r}")
        labels[name] = "".join(chars)
        while pos < length and text[pos] in " \t":
            pos += 1
        if pos < length and text[pos] == ",":
            pos += 1
            continue
        if pos < length and text[pos] == "}":
            return labels, pos + 1
        raise _LineError("expected ',' or '}' in label set")


def parse_value(raw: str) -> float:
    """Parse an exposition value, accepting NaN and +/-Inf."""
    if "_" in raw:
        raise ValueError(f"invalid value {raw!r}")
    return float(raw)


def parse_line(line: str) -> tuple[str, dict[str, str], float]:
    """Parse one sample line into (name, labels, value).

    Raises:
        ValueError: If the line is not a valid sample line.
    """
    match = _METRIC_NAME.match(line)
    if match is None:
        raise _LineError("line does not start with a metric name")
    name = match.group(0)
    pos = match.end()
    labels: dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        labels, pos = _parse_labels(line, pos)
    rest = line[pos:]
    if rest and rest[0] not in " \t":
        raise _LineError("expected whitespace before value")
    fields = rest.split()
    # An optional exporter timestamp may follow the value; scrape time wins.
    if len(fields) not in (1, 2):
        raise _LineError("expected a value and optional timestamp")
    value = parse_value(fields[0])
    if len(fields) == 2:
        int(fields[1])
    return name, labels, value


def parse_exposition(body: str, timestamp: float) -> ExpositionResult:
    """Parse an exposition body into samples stamped with ``timestamp``.

    Blank lines and ``#`` comment lines are ignored. Malformed lines are
    skipped and counted rather than failing the whole body.
    """
    result = ExpositionResult()
    for raw_line in body.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            name, labels, value = parse_line(line)
        except ValueError:
            result.skipped += 1
            continue
        result.samples.append(
            Sample(name=name, timestamp=timestamp, value=value, labels=labels)
        )
    return result


def parse_selector(text: str) -> tuple[str, dict[str, str]]:
    """Parse a query selector into (metric name, label matchers).

    Accepts ``name``, ``name{k="v",...}`` and ``{__name__="name",k="v"}``.
    Only exact-match (``=``) matchers are supported.

    Raises:
        SelectorError: If the selector is empty or malformed.
    """
    text = text.strip()
    if not text:
        raise SelectorError("empty selector")
    name = ""
    pos = 0
    match = _METRIC_NAME.match(text)
    if match is not None:
        name = match.group(0)
        pos = match.end()
    selector: dict[str, str] = {}
    if pos < len(text):
        if text[pos] != "{":
            raise SelectorError(f"unexpected {text[pos]!r} in selector {text!r}")
        try:
            selector, pos = _parse_labels(text, pos)
        except _LineError as e:
            raise SelectorError(f"invalid selector {text!r}: {e}") from e
        if text[pos:].strip():
            raise SelectorError(f"trailing characters in selector {text!r}")
    if "__name__" in selector:
        explicit = selector.pop("__name__")
        if name and name != explicit:
            raise SelectorError(f"conflicting metric names in selector {text!r}")
        name = explicit
    if not name:
        raise SelectorError(f"selector {text!r} does not name a metric")
    return name, selector


def format_value(value: float) -> str:
    """Format a float the way exposition and query responses expect."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(float(value))


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    pairs = ",".join(
        f'{key}="{_escape_label_value(value)}"' for key, value in sorted(labels.items())
    )
    return "{" + pairs + "}"


def encode_samples(
    samples: Iterable[Sample],
    types: dict[str, str] | None = None,
    help_text: dict[str, str] | None = None,
) -> str:
    """Encode samples to text exposition format.

    Args:
        samples: Samples to encode, grouped by name in iteration order.
        types: Optional metric type per name, emitted as ``# TYPE`` lines.
        help_text: Optional help string per name, emitted as ``# HELP`` lines.

    Returns:
        Exposition text ending in a newline, or an empty string.
    """
    types = types or {}
    help_text = help_text or {}
    lines: list[str] = []
    announced: set[str] = set()
    for sample in samples:
        if sample.name not in announced:
            announced.add(sample.name)
            if sample.name in help_text:
                lines.append(f"# HELP {sample.name} {help_text[sample.name]}")
            if sample.name in types:
                lines.append(f"# TYPE {sample.name} {types[sample.name]}")
        lines.append(
            f"{sample.name}{format_labels(sample.labels)} {format_value(sample.value)}"
        )
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
