"""
Visibility and ownership rules for exercises and routines.

Pure functions of (record, actor) plus the matching SQL filter for listings.
"""
from typing import Any, Protocol

from sqlalchemy import or_


ELEVATED_ROLES = ("trainer", "admin")
VISIBILITIES = ("private", "shared", "public")


class Actor(Protocol):
    id: int
    role: str


def is_elevated(actor: Actor) -> bool:
    return actor.role in ELEVATED_ROLES


def is_owner(record: Any, actor: Actor) -> bool:
    return record.created_by == actor.id


def can_view(record: Any, actor: Actor) -> bool:
    if record.visibility == "public":
        return True
    if is_owner(record, actor):
        return True
    return record.visibility == "shared" and is_elevated(actor)


def can_modify(record: Any, actor: Actor) -> bool:
    return is_owner(record, actor) or is_elevated(actor)


def visible_filter(model: Any, actor: Actor):
    """WHERE clause selecting the rows of `model` that `actor` can see."""
    clauses = [model.visibility == "public", model.created_by == actor.id]
    if is_elevated(actor):
        clauses.append(model.visibility == "shared")
    return or_(*clauses)
