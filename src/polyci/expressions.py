# expressions.py
# ${{ context.name }} interpolation for step commands and parameters.
from __future__ import annotations

import re
from typing import Any, Dict, Mapping

_EXPR = re.compile(r"\$\{\{\s*([A-Za-z_][\w-]*)\.([\w.-]+)\s*\}\}")


def interpolate(text: str, contexts: Mapping[str, Mapping[str, Any]]) -> str:
    """
    Replace `${{ ctx.name }}` with contexts[ctx][name].

    Unknown contexts or names expand to "" (same as hosted CI runners).
    """
    if not text or "${{" not in text:
        return text

    def _sub(m: re.Match) -> str:
        ctx = contexts.get(m.group(1)) or {}
        value = ctx.get(m.group(2))
        return "" if value is None else str(value)

    return _EXPR.sub(_sub, text)


def interpolate_data(data: Any, contexts: Mapping[str, Mapping[str, Any]]) -> Any:
    """Recursively interpolate every string inside lists/dicts."""
    if isinstance(data, str):
        return interpolate(data, contexts)
    if isinstance(data, list):
        return [interpolate_data(v, contexts) for v in data]
    if isinstance(data, tuple):
        return tuple(interpolate_data(v, contexts) for v in data)
    if isinstance(data, dict):
        return {k: interpolate_data(v, contexts) for k, v in data.items()}
    return data


def build_contexts(
    *,
    env: Mapping[str, str],
    matrix: Mapping[str, Any],
    job: Dict[str, Any],
    run: Dict[str, Any],
) -> Dict[str, Mapping[str, Any]]:
    return {"env": env, "matrix": matrix, "job": job, "run": run}
