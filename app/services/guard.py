"""
Idempotency marker protocol shared by both state machines.

Change capture is at-least-once and every write a state machine makes is
itself captured, so a handler must recognise writes it should not act on:

  - an edit is processed only when its originator set `is_edit` fresh
    (absent/false before, true after); every committed write clears it
  - a creation write-back carries the stamped identity field (`tid`/`pid`);
    seeing the stamp appear on an existing unstamped value means "we already
    created this". A write with no previous value is always a creation.
"""
from typing import Optional

from pydantic import BaseModel


def is_fresh_edit(previous: Optional[BaseModel], next: Optional[BaseModel]) -> bool:
    if previous is None or next is None:
        return False
    return not getattr(previous, "is_edit", None) and bool(getattr(next, "is_edit", None))


def is_creation_echo(previous: Optional[BaseModel], next: Optional[BaseModel], field: str) -> bool:
    if next is None or not getattr(next, field, None):
        return False
    return previous is not None and not getattr(previous, field, None)
