"""Cycle report formatting.

- ``format_cycle_report`` -- human-readable post-cycle summary.
- ``cycle_to_json`` -- structured dict for JSON output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CycleResult

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_cycle_report(result: CycleResult) -> str:
    """Format a cycle result as human-readable text.

    Sections are only included when they contain at least one secondary.

    Args:
        result: The completed cycle.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"Sync cycle ({result.trigger.value})")
    lines.append(f"Started: {result.started_at}")
    if result.completed_at:
        lines.append(f"Completed: {result.completed_at}")
    lines.append("")

    if result.skipped_reason:
        lines.append(f"Skipped: {result.skipped_reason}")
        return "\n".join(lines).rstrip()

    lines.append(
        f"{len(result.results)} secondaries: "
        f"{len(result.succeeded)} ok, {len(result.degraded)} degraded, "
        f"{len(result.failures)} failed, "
        f"{len(result.skipped_secondaries)} skipped"
    )
    lines.append("")

    if result.succeeded:
        lines.append("Synced:")
        for r in result.succeeded:
            detail = "; ".join(r.steps) or r.reason or "nothing to do"
            lines.append(f"  {r.instance} ({r.sync_mode.value}): {detail}")
        lines.append("")

    if result.degraded:
        lines.append("Degraded:")
        for r in result.degraded:
            lines.append(
                f"  {r.instance} ({r.sync_mode.value}): rejected keys "
                f"{', '.join(r.rejected_keys)}"
            )
        lines.append("")

    if result.failures:
        lines.append("Failed:")
        for r in result.failures:
            lines.append(f"  {r.instance} ({r.error_type}): {r.reason}")
        lines.append("")

    if result.skipped_secondaries:
        lines.append("Skipped:")
        for r in result.skipped_secondaries:
            lines.append(f"  {r.instance}: {r.reason}")
        lines.append("")

    warnings = [(r.instance, w) for r in result.results for w in r.warnings]
    if warnings:
        lines.append("Warnings:")
        for instance, warning in warnings:
            lines.append(f"  {instance}: {warning}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def cycle_to_json(result: CycleResult) -> dict:
    """Convert a cycle result to a structured dict for JSON serialisation.

    Args:
        result: The cycle result.

    Returns:
        Dict with trigger info, counts and per-secondary details.
    """
    secondaries = []
    for r in result.results:
        entry: dict = {
            "instance": r.instance,
            "sync_mode": r.sync_mode.value,
            "status": r.status.value,
            "steps": list(r.steps),
        }
        if r.error_type:
            entry["error_type"] = r.error_type
        if r.reason:
            entry["reason"] = r.reason
        if r.warnings:
            entry["warnings"] = list(r.warnings)
        if r.rejected_keys:
            entry["rejected_keys"] = list(r.rejected_keys)
        secondaries.append(entry)

    data: dict = {
        "trigger": result.trigger.value,
        "started_at": result.started_at,
        "completed_at": result.completed_at,
        "ok": result.ok,
        "counts": {
            "total": len(result.results),
            "ok": len(result.succeeded),
            "degraded": len(result.degraded),
            "failed": len(result.failures),
            "skipped": len(result.skipped_secondaries),
        },
        "secondaries": secondaries,
    }
    if result.skipped_reason:
        data["skipped_reason"] = result.skipped_reason
        data["error_type"] = result.error_type
    return data
