"""
Response-body parsing and field extraction for captured API calls.

Extraction is an ordered list of pure path lookups per endpoint; the first
lookup that yields a non-empty value wins.
"""

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .data_models import CHART_NAME, DATASET_NAME, ExtractedField

logger = logging.getLogger(__name__)

BODY_SAMPLE_LIMIT = 500

Extractor = Callable[[Any], Optional[Any]]

_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def _split_path(path: str) -> List[Any]:
    keys: List[Any] = []
    for name, index in _PATH_TOKEN.findall(path):
        keys.append(int(index) if index else name)
    return keys


def path_extractor(path: str) -> Extractor:
    """Build a lookup for a dotted path such as ``data.viz.title`` or ``columns[0].datasetName``."""
    keys = _split_path(path)

    def extract(body: Any) -> Optional[Any]:
        node = body
        for key in keys:
            if isinstance(key, int):
                if not isinstance(node, list) or key >= len(node):
                    return None
                node = node[key]
            else:
                if not isinstance(node, dict):
                    return None
                node = node.get(key)
            if node is None:
                return None
        return node

    extract.__name__ = f"extract_{path}"
    return extract


@dataclass(frozen=True)
class ExtractionRule:
    pattern: str
    kind: str
    extractors: Tuple[Extractor, ...]

    def matches(self, url: str) -> bool:
        return self.pattern in (url or "")

    def apply(self, body: Any) -> Optional[ExtractedField]:
        for extractor in self.extractors:
            try:
                value = extractor(body)
            except Exception as e:
                logger.debug(f"Extractor {getattr(extractor, '__name__', extractor)} failed: {e}")
                continue
            if value is not None and value != "":
                return ExtractedField(kind=self.kind, value=str(value))
        return None


def rule(pattern: str, kind: str, paths: Sequence[str]) -> ExtractionRule:
    return ExtractionRule(pattern, kind, tuple(path_extractor(p) for p in paths))


CHART_NAME_PATHS = (
    "viz.title",
    "title",
    "data.title",
    "data.viz.title",
    "name",
    "chartName",
    "viz.id",
    "data.viz.id",
)

DEFAULT_RULES = (
    rule("/vizResponse", CHART_NAME, CHART_NAME_PATHS),
    rule("/tqlSpark", DATASET_NAME, ("columns[0].datasetName",)),
)


def find_rule(url: str, rules: Sequence[ExtractionRule]) -> Optional[ExtractionRule]:
    for r in rules:
        if r.matches(url):
            return r
    return None


def parse_body(body: str, base64_encoded: bool = False) -> Optional[Any]:
    """
    Parse a response body into JSON.

    Handles base64 payloads from the DevTools protocol and anti-XSSI prefixes
    before falling back to the first balanced JSON object in the text.
    Returns None when nothing parses.
    """
    if body is None:
        return None
    if base64_encoded:
        try:
            body = base64.b64decode(body).decode("utf-8", errors="replace")
        except Exception as e:
            logger.debug(f"Base64 body decode failed: {e}")
            return None
    s = body.strip()
    if not s:
        return None

    # Anti-XSSI guards such as )]}'
    if s.startswith(")]}'"):
        s = s[4:].lstrip(",\n ")

    try:
        return json.loads(s)
    except json.JSONDecodeError as e:
        logger.debug(f"Direct JSON parse failed: {e}")

    # Balanced braces search for the first JSON object
    start = s.find("{")
    if start == -1:
        return None
    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
        elif ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(s[start:i + 1])
                except json.JSONDecodeError:
                    return None
    return None


def body_sample(body: Any, limit: int = BODY_SAMPLE_LIMIT) -> str:
    """Pretty-printed, truncated rendering of a body for the network log."""
    try:
        text = json.dumps(body, indent=2, default=str)
    except (TypeError, ValueError):
        text = str(body)
    return text[:limit]
