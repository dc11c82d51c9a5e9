"""Helpers shared by the JUnit and Clover parsers."""

import math
import xml.etree.ElementTree as ET

from ci_report.models import MalformedDocument


def load_root(content: bytes | str, kind: str) -> ET.Element:
    """Parse *content* and return its root element.

    Raises:
        MalformedDocument: empty input or XML that is not well-formed.
    """
    if not content or not content.strip():
        raise MalformedDocument(f"Empty {kind} document")
    try:
        return ET.fromstring(content)
    except ET.ParseError as exc:
        raise MalformedDocument(f"Invalid {kind} XML: {exc}") from exc


def local_name(tag: str) -> str:
    """Strip a ``{namespace}`` prefix from an element tag."""
    return tag.split("}", 1)[1] if "}" in tag else tag


def parse_int(raw: str | None) -> int:
    """Base-10 integer; missing, non-numeric or negative values become 0."""
    if raw is None:
        return 0
    try:
        value = int(raw.strip(), 10)
    except ValueError:
        # some generators write counters as "12.0"
        try:
            value = int(float(raw))
        except (ValueError, OverflowError):
            return 0
    return value if value > 0 else 0


def parse_float(raw: str | None) -> float:
    """Float seconds; missing, non-numeric, negative or non-finite values become 0."""
    if raw is None:
        return 0.0
    try:
        value = float(raw.replace(",", ""))
    except ValueError:
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value
