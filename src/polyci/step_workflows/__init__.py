from typing import Callable, Dict

from . import artifact, cache, checkout, coverage, notify, toolchain

# step kind -> run_step(ctx, step); "sh" is handled by the runner itself
STEP_KINDS: Dict[str, Callable] = {
    "checkout": checkout.run_step,
    "setup-toolchain": toolchain.run_step,
    "cache": cache.run_step,
    "upload-artifact": artifact.run_step,
    "upload-coverage": coverage.run_step,
    "notify": notify.run_step,
}

__all__ = ["STEP_KINDS"]
