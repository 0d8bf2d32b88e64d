# step_workflows/notify.py
from __future__ import annotations

from ..context import JobContext
from ..model import Condition, Predicate, Step


def notify_step(
    text: str,
    *,
    name: str = "Notify on failure",
    channel: str | None = None,
    condition: Predicate = Condition.FAILURE,
) -> Step:
    """Chat notification; failure-conditioned by default and always best-effort."""
    data = {"text": text}
    if channel:
        data["channel"] = channel
    return Step(name=name, kind="notify", data=data, condition=condition, best_effort=True)


def run_step(ctx: JobContext, step: Step) -> str | None:
    params = ctx.params(step)
    channel = params.get("channel") or ctx.config.notify_channel
    delivered = ctx.notifier.notify(channel, params["text"])
    ctx.notifications += 1
    return "delivered" if delivered else "not delivered"
