"""Plan documents: YAML or JSON files describing a goal and its step graph.

A document looks like planner output::

    goal: Add rate limiting
    steps:
      - id: design
        type: DESIGN
      - id: build
        depends_on: [design]
    dependencies: {}   # optional, merged with per-step depends_on
    risks: []

Steps may list their prerequisites inline (``depends_on``) or through the
top-level ``dependencies`` map.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import DocumentError, InvalidPlanError
from .plan import Plan
from .planner import plan_from_raw

JSON_SUFFIXES = frozenset({".json"})


def parse_document(text: str, *, source: str = "<document>", fmt: str = "yaml") -> dict[str, Any]:
    try:
        if fmt == "json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise DocumentError(f"{source}: cannot parse {fmt}: {exc}") from exc
    if not isinstance(data, dict):
        raise DocumentError(f"{source}: top level must be a mapping")
    return data


def _merge_inline_dependencies(data: Mapping[str, Any], source: str) -> dict[str, Any]:
    raw = dict(data)
    steps = raw.get("steps")
    if not isinstance(steps, list):
        raise DocumentError(f"{source}: 'steps' must be a list")

    deps = raw.get("dependencies") or {}
    if not isinstance(deps, Mapping):
        raise DocumentError(f"{source}: 'dependencies' must be a mapping")
    merged: dict[str, list[str]] = {
        str(key): [str(v) for v in (value or [])] for key, value in deps.items()
    }
    for step in steps:
        if not isinstance(step, Mapping) or "depends_on" not in step:
            continue
        inline = step["depends_on"] or []
        if isinstance(inline, str):
            inline = [inline]
        if not inline:
            continue
        bucket = merged.setdefault(str(step.get("id")), [])
        for dep in inline:
            if str(dep) not in bucket:
                bucket.append(str(dep))
    raw["dependencies"] = merged
    return raw


def plan_from_document(
    data: Mapping[str, Any],
    *,
    source: str = "<document>",
    minutes_per_1k_tokens: int = 2,
    confidence: float = 0.7,
) -> Plan:
    """Build an unvalidated DRAFT plan from parsed document data."""
    goal = data.get("goal")
    if not isinstance(goal, str):
        raise DocumentError(f"{source}: 'goal' must be a string")
    raw = _merge_inline_dependencies(data, source)
    try:
        return plan_from_raw(
            raw,
            goal=goal,
            minutes_per_1k_tokens=minutes_per_1k_tokens,
            confidence=confidence,
        )
    except InvalidPlanError as exc:
        raise DocumentError(f"{source}: {'; '.join(exc.errors)}") from exc


def load_plan(
    path: Path,
    *,
    minutes_per_1k_tokens: int = 2,
    confidence: float = 0.7,
) -> Plan:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DocumentError(f"cannot read {path}: {exc}") from exc
    fmt = "json" if path.suffix.lower() in JSON_SUFFIXES else "yaml"
    data = parse_document(text, source=str(path), fmt=fmt)
    return plan_from_document(
        data,
        source=str(path),
        minutes_per_1k_tokens=minutes_per_1k_tokens,
        confidence=confidence,
    )
