# step_workflows/toolchain.py
from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from ..context import JobContext
from ..errors import CIError
from ..model import Step

TOOL_HINTS = {
    "rust": "Install the Rust toolchain (rustup) or fix PATH.",
    "python": "Install the requested Python version (e.g. via pyenv) or fix PATH.",
    "go": "Install Go or fix PATH.",
    "node": "Install Node.js (includes npm) or fix PATH.",
    "rustfmt": "Run: rustup component add rustfmt",
    "cargo-clippy": "Run: rustup component add clippy",
}

COMPONENT_BINARIES = {"rustfmt": "rustfmt", "clippy": "cargo-clippy"}

_VERSION_RE = re.compile(r"(\d+(?:\.\d+)+|\d+)")


@dataclass(frozen=True)
class Toolchain:
    name: str
    binaries: Tuple[str, ...]      # candidates, "{version}" is substituted
    version_args: Tuple[str, ...]
    env_var: str                   # exported with the resolved binary path
    aliases: Tuple[str, ...] = ()  # plain names shimmed to the resolved binary


TOOLCHAINS = {
    "rust": Toolchain("rust", ("rustc",), ("--version",), "POLYCI_RUSTC"),
    "python": Toolchain(
        "python",
        ("python{version}", "python3", "python"),
        ("--version",),
        "POLYCI_PYTHON",
        aliases=("python", "python3"),
    ),
    "go": Toolchain("go", ("go",), ("version",), "POLYCI_GO"),
    "node": Toolchain("node", ("node",), ("--version",), "POLYCI_NODE"),
}


# ---------------------------------------------------------------------
# Toolchain step helper
# ---------------------------------------------------------------------

def setup_toolchain_step(
    tool: str,
    version: str = "",
    *,
    name: str | None = None,
    components: Optional[List[str]] = None,
    strict: bool = True,
) -> Step:
    """
    Create a step that verifies a toolchain is installed at `version`.

    The step does not install anything; it resolves the binary, checks
    the version prefix and puts the binary (and, for python, `python` /
    `python3` shims pointing at it) first on PATH for the rest of the job.
    """
    if tool not in TOOLCHAINS:
        raise ValueError(f"Unknown toolchain {tool!r}; known: {sorted(TOOLCHAINS)}")
    data = {"tool": tool, "version": version, "strict": strict}
    if components:
        data["components"] = list(components)
    return Step(name=name or f"Set up {tool}", kind="setup-toolchain", data=data)


# ---------------------------------------------------------------------
# Toolchain step execution
# ---------------------------------------------------------------------

def tool_version(binary: str, args: Tuple[str, ...]) -> Optional[str]:
    """
    Best-effort version discovery: first dotted number in the tool's output.
    """
    try:
        completed = subprocess.run(
            [binary, *args],
            text=True,
            capture_output=True,
            check=False,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    text = (completed.stdout or "").strip() or (completed.stderr or "").strip()
    if completed.returncode != 0 or not text:
        return None
    m = _VERSION_RE.search(text)
    return m.group(1) if m else None


def version_matches(found: str, wanted: str) -> bool:
    """'3.10.12' satisfies '3.10'; '3.1' does not satisfy '3.10'."""
    if not wanted:
        return True
    return found == wanted or found.startswith(wanted + ".")


def _which(binary: str, path: str | None) -> Optional[str]:
    return shutil.which(binary, path=path)


def resolve_binary(chain: Toolchain, version: str, path: str | None) -> Tuple[Optional[str], Optional[str]]:
    """Returns (binary path, detected version) for the first candidate that fits."""
    fallback: Tuple[Optional[str], Optional[str]] = (None, None)
    for pattern in chain.binaries:
        if "{version}" in pattern and not version:
            continue
        found = _which(pattern.format(version=version), path)
        if not found:
            continue
        detected = tool_version(found, chain.version_args)
        if detected and version_matches(detected, version):
            return found, detected
        if fallback[0] is None:
            fallback = (found, detected)
    return fallback


def _shim_aliases(shim_dir: Path, binary: str, aliases: Tuple[str, ...]) -> Path:
    """Link each alias to `binary` inside a job-private directory."""
    shim_dir.mkdir(parents=True, exist_ok=True)
    for alias in aliases:
        link = shim_dir / alias
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(binary)
    return shim_dir


def run_step(ctx: JobContext, step: Step) -> str | None:
    params = ctx.params(step)
    tool = params["tool"]
    version = str(params.get("version") or "").strip()
    strict = bool(params.get("strict", True))
    chain = TOOLCHAINS[tool]
    search_path = ctx.env.get("PATH")

    binary, detected = resolve_binary(chain, version, search_path)
    if binary is None:
        raise CIError(
            kind="MissingTools",
            job=ctx.job.name,
            step=step.name,
            message=f"{tool} {version} not found" if version else f"{tool} not found",
            details={"PATH": search_path or "", "hint": TOOL_HINTS.get(tool, "Install it and ensure it is on PATH.")},
        )

    if not version_matches(detected or "", version):
        msg = f"{tool} {version} requested, found {detected or 'unknown version'} at {binary}"
        if strict:
            raise CIError(
                kind="ToolVersionMismatch",
                job=ctx.job.name,
                step=step.name,
                message=msg,
                details={"hint": TOOL_HINTS.get(tool, "")},
            )
        ctx.console.print_warning(f"[{ctx.job.name}] {msg}")

    missing: List[str] = []
    for component in params.get("components", []):
        comp_bin = COMPONENT_BINARIES.get(component)
        if comp_bin and not _which(comp_bin, search_path):
            missing.append(comp_bin)
    if missing:
        raise CIError(
            kind="MissingTools",
            job=ctx.job.name,
            step=step.name,
            message=f"{tool} components not installed: {', '.join(missing)}",
            details={"hints": {m: TOOL_HINTS.get(m, "") for m in missing}},
        )

    path_dirs = [str(Path(binary).parent)]
    if chain.aliases:
        path_dirs.insert(0, str(_shim_aliases(ctx.tmp_dir / "toolchains" / tool, binary, chain.aliases)))
    if search_path:
        path_dirs.append(search_path)
    ctx.env["PATH"] = os.pathsep.join(path_dirs)
    ctx.env[chain.env_var] = binary
    return f"{tool} {detected or '?'} ({binary})"
