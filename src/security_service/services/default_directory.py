"""
Keeps exactly one directory flagged default per organization.

The planners are pure: given the organization's directories as currently
stored (creation order) and the change being made, they return the records
that must be written. Callers apply the plan inside one transaction.
"""

from __future__ import annotations

from security_service.domain.entities.tenant import Directory


def plan_save(existing: list[Directory], incoming: Directory) -> list[Directory]:
    """Return the directories to write when `incoming` is created or updated.

    The returned list always ends with `incoming` (with its final
    `is_default`); any other entries are siblings whose flag changed.
    """
    stored = next((d for d in existing if d.id == incoming.id), None)
    others = [d for d in existing if d.id != incoming.id]
    other_defaults = [d for d in others if d.is_default]

    changes: list[Directory] = []
    if incoming.is_default:
        for d in other_defaults:
            changes.append(d.model_copy(update={"is_default": False}))
    elif not other_defaults:
        was_default = stored is not None and stored.is_default
        if was_default and others:
            # demoting the current default hands the flag to the oldest sibling
            changes.append(others[0].model_copy(update={"is_default": True}))
        else:
            incoming = incoming.model_copy(update={"is_default": True})

    changes.append(incoming)
    return changes


def plan_delete(existing: list[Directory], deleted_id: str) -> list[Directory]:
    """Return the sibling to promote (if any) when `deleted_id` is removed."""
    remaining = [d for d in existing if d.id != deleted_id]
    if not remaining or any(d.is_default for d in remaining):
        return []
    return [remaining[0].model_copy(update={"is_default": True})]


def default_count(directories: list[Directory]) -> int:
    return sum(1 for d in directories if d.is_default)
