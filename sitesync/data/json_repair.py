"""Best-effort decoding of JSON array bodies.

The master service streams several hundred sites in one chunked response and
the connection is sometimes cut before the closing bracket. Rather than
failing the whole sync, decoding degrades in three steps:

1. strict parse of the body as a JSON array (a well-formed non-array body
   stops here with no items);
2. re-close the array (drop a dangling comma, append ``]``) and parse again;
3. scan the raw text for complete top-level ``{...}`` objects and parse each
   one on its own, discarding fragments that do not parse.

Decoding never raises; at worst it returns an empty list.
"""

from __future__ import annotations

import json
from typing import Optional

from sitesync.core.logger import get_logger

log = get_logger("data.json_repair")

MODE_EMPTY = "empty"
MODE_STRICT = "strict"
MODE_REPAIRED = "repaired"
MODE_SALVAGED = "salvaged"
MODE_NOT_ARRAY = "not_array"


def _objects(data: list) -> list[dict]:
    return [item for item in data if isinstance(item, dict)]


def _as_object_list(raw: str) -> Optional[list[dict]]:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, list):
        return None
    return _objects(data)


def reclose_array(text: str) -> str:
    s = text.rstrip()
    if s.endswith(","):
        return s[:-1].rstrip() + "]"
    if not s.endswith("]"):
        return s + "]"
    return s


def extract_complete_objects(text: str) -> list[dict]:
    out: list[dict] = []
    discarded = 0
    depth = 0
    start: Optional[int] = None
    in_string = False
    escaped = False

    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}":
            if depth == 0:
                continue
            depth -= 1
            if depth == 0 and start is not None:
                chunk = text[start : idx + 1]
                start = None
                try:
                    obj = json.loads(chunk)
                except ValueError:
                    discarded += 1
                    continue
                if isinstance(obj, dict):
                    out.append(obj)

    if discarded or depth:
        log.debug("json_salvage_discarded complete=%s incomplete_tail=%s", discarded, bool(depth))
    return out


def decode_json_array(body: Optional[str]) -> tuple[list[dict], str]:
    """Decode ``body`` and report which step produced the result.

    A body that parses cleanly but is not an array (an error envelope such as
    ``{"error": "unauthorized"}``) yields no items and ``MODE_NOT_ARRAY``;
    it is never salvaged into records.
    """
    text = (body or "").strip()
    if not text:
        return [], MODE_EMPTY

    try:
        data = json.loads(text)
    except ValueError:
        pass
    else:
        if isinstance(data, list):
            return _objects(data), MODE_STRICT
        log.warning("json_body_not_array type=%s", type(data).__name__)
        return [], MODE_NOT_ARRAY

    items = _as_object_list(reclose_array(text))
    if items is not None:
        return items, MODE_REPAIRED

    return extract_complete_objects(text), MODE_SALVAGED
