# linesight/services/episode_payloads.py
"""
Reading the loosely-typed JSON columns on Episode.

Association payloads (affected steps/CTQs/lots/fixtures) show up as flat id
lists, lists of objects, or objects of named id lists, e.g.

    [3, 7]
    [{"stepId": 3, "deltaFpy": -0.04}]
    {"stepDefinitionIds": [3], "fixtureIds": [12]}

Metrics payloads (before/after) are either lists of failure-code strings or
keyed objects. Anything else is `Opaque` and simply contributes nothing.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, FrozenSet, List, Optional, Tuple, Union

from linesight.domain import Episode

STEP = "step"
CTQ = "ctq"
LOT = "lot"
FIXTURE = "fixture"
DIMENSIONS = (STEP, CTQ, LOT, FIXTURE)

_KEY_SPLIT = re.compile(r"[^a-z0-9]+")
_KEY_WORDS = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])")


# ---------- Tagged shapes ----------
@dataclass(frozen=True)
class FlatIds:
    ids: FrozenSet[int]


@dataclass(frozen=True)
class NestedNamed:
    keys: Tuple[str, ...]


@dataclass(frozen=True)
class FailureCodeList:
    codes: Tuple[str, ...]


@dataclass(frozen=True)
class KeyedMetrics:
    keys: Tuple[str, ...]


@dataclass(frozen=True)
class Opaque:
    kind: str


AssociationShape = Union[FlatIds, NestedNamed, Opaque]
MetricsShape = Union[FailureCodeList, KeyedMetrics, Opaque]


def _as_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _norm_key(key: Any) -> str:
    return _KEY_SPLIT.sub("", str(key).lower())


def key_dimension(key: Any) -> Optional[str]:
    """
    Which dimension a key names (`stepDefinitionIds` -> step), if any.

    Only whole camelCase / snake_case words count: `componentLotId` names a
    lot, `slotId` does not.
    """
    words = {w.lower() for w in _KEY_WORDS.findall(str(key))}
    for dim in (FIXTURE, STEP, CTQ, LOT):
        if dim in words or dim + "s" in words:
            return dim
    return None


def is_id_key(key: Any) -> bool:
    k = _norm_key(key)
    return k == "id" or k.endswith("id") or k.endswith("ids")


def _collect_keys(payload: Any) -> Tuple[str, ...]:
    keys: List[str] = []
    stack = [payload]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            for k, v in node.items():
                if str(k) not in keys:
                    keys.append(str(k))
                stack.append(v)
        elif isinstance(node, list):
            stack.extend(node)
    return tuple(keys)


def classify_association(payload: Any) -> AssociationShape:
    if isinstance(payload, list):
        ids = [_as_id(v) for v in payload]
        if all(i is not None for i in ids):
            return FlatIds(frozenset(i for i in ids if i is not None))
        if any(isinstance(v, (dict, list)) for v in payload):
            return NestedNamed(_collect_keys(payload))
        return Opaque("list")
    if isinstance(payload, dict):
        return NestedNamed(_collect_keys(payload))
    return Opaque(type(payload).__name__)


def _walk_ids(node: Any, dimension: str, named: bool, out: set) -> None:
    if isinstance(node, list):
        for item in node:
            i = _as_id(item)
            if i is not None:
                if named:
                    out.add(i)
            elif isinstance(item, (dict, list)):
                _walk_ids(item, dimension, named, out)
        return
    if not isinstance(node, dict):
        return
    for key, value in node.items():
        dim = key_dimension(key)
        if dim is not None and dim != dimension:
            continue
        inner = named or dim == dimension
        i = _as_id(value)
        if i is not None:
            if inner and is_id_key(key):
                out.add(i)
        elif isinstance(value, (dict, list)):
            _walk_ids(value, dimension, inner, out)


def extract_ids(payload: Any, dimension: str, *, require_named: bool = False) -> FrozenSet[int]:
    """
    Every id for `dimension` found anywhere in `payload`.

    Containers are always descended except under keys naming another
    dimension. With `require_named`, only ids under a key naming this
    dimension count (used to pick fixture ids out of step payloads).
    """
    if dimension not in DIMENSIONS:
        raise ValueError(f"unknown dimension: {dimension}")
    shape = classify_association(payload)
    if isinstance(shape, Opaque):
        return frozenset()
    if isinstance(shape, FlatIds):
        # bare ids sit under no key, so they never name a dimension
        return frozenset() if require_named else shape.ids
    out: set = set()
    _walk_ids(payload, dimension, not require_named, out)
    return frozenset(out)


def string_leaves(payload: Any) -> List[str]:
    """Every string value in a JSON tree, keys excluded."""
    if payload is None:
        return []
    if isinstance(payload, str):
        return [payload]
    if isinstance(payload, list):
        return [s for item in payload for s in string_leaves(item)]
    if isinstance(payload, dict):
        return [s for v in payload.values() for s in string_leaves(v)]
    return []


def normalize_code(code: str) -> str:
    return code.strip().lower()


def classify_metrics(payload: Any) -> MetricsShape:
    if isinstance(payload, list) and all(isinstance(v, str) for v in payload):
        return FailureCodeList(tuple(normalize_code(v) for v in payload))
    if isinstance(payload, dict):
        return KeyedMetrics(tuple(str(k) for k in payload.keys()))
    return Opaque(type(payload).__name__)


def extract_failure_codes(payload: Any) -> FrozenSet[str]:
    shape = classify_metrics(payload)
    if isinstance(shape, FailureCodeList):
        codes = shape.codes
    else:
        codes = tuple(normalize_code(s) for s in string_leaves(payload))
    return frozenset(c for c in codes if c)


# ---------- Per-episode footprint ----------
@dataclass(frozen=True)
class EpisodeFootprint:
    step_ids: FrozenSet[int] = frozenset()
    ctq_ids: FrozenSet[int] = frozenset()
    lot_ids: FrozenSet[int] = frozenset()
    fixture_ids: FrozenSet[int] = frozenset()
    failure_codes: FrozenSet[str] = frozenset()


def episode_fixture_ids(episode: Episode) -> FrozenSet[int]:
    found = set(extract_ids(episode.affected_fixtures, FIXTURE))
    for payload in (episode.affected_steps, episode.affected_ctqs, episode.affected_lots):
        found |= extract_ids(payload, FIXTURE, require_named=True)
    return frozenset(found)


def episode_footprint(episode: Episode) -> EpisodeFootprint:
    return EpisodeFootprint(
        step_ids=extract_ids(episode.affected_steps, STEP),
        ctq_ids=extract_ids(episode.affected_ctqs, CTQ),
        lot_ids=extract_ids(episode.affected_lots, LOT),
        fixture_ids=episode_fixture_ids(episode),
        failure_codes=extract_failure_codes(episode.before_metrics) | extract_failure_codes(episode.after_metrics),
    )
