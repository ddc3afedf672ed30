from __future__ import annotations

from pydantic import BaseModel


class CounterAction(BaseModel):
    # increment|decrement; anything else is rejected by CounterService.
    action: str = ""


class CounterValue(BaseModel):
    value: int
