"""
Flight actions and sequences
"""

import math
from dataclasses import dataclass
from threading import TIMEOUT_MAX
from typing import Callable, Iterable, Tuple


class Action():
    """ One discrete step of a flight plan """
    name = "action"

    def dispatch(self, client, callback: Callable[[bool], None]):
        """ Sends the action to the drone client, `callback(ok)` fires on ack """
        raise NotImplementedError(f"{type(self).__name__} is not a client action")


@dataclass(frozen=True)
class Takeoff(Action):
    name = "takeoff"

    def dispatch(self, client, callback):
        client.takeoff(callback)


@dataclass(frozen=True)
class Land(Action):
    name = "land"

    def dispatch(self, client, callback):
        client.land(callback)


@dataclass(frozen=True)
class Stop(Action):
    """ Cancel any movement and hover in place """
    name = "stop"

    def dispatch(self, client, callback):
        client.stop(callback)


@dataclass(frozen=True)
class Rotate(Action):
    """ Yaw in place, speed is normalized to [-1, 1] (positive is clockwise) """
    speed: float
    name = "rotate"

    def __post_init__(self):
        if not -1.0 <= self.speed <= 1.0:
            raise ValueError(f"Rotate speed must be in [-1, 1], got {self.speed}")

    def dispatch(self, client, callback):
        client.rotate(self.speed, callback)


@dataclass(frozen=True)
class Wait(Action):
    """ Delay before the next step starts """
    duration_ms: float
    name = "wait"

    def __post_init__(self):
        if not math.isfinite(self.duration_ms) or self.duration_ms < 0:
            raise ValueError(f"Wait duration must be a finite non-negative number, got {self.duration_ms}")
        # Event.wait overflows past TIMEOUT_MAX
        if self.duration_ms > TIMEOUT_MAX * 1000:
            raise ValueError(f"Wait duration too long ({self.duration_ms}ms)")

    @property
    def seconds(self):
        return self.duration_ms / 1000.0


Sequence = Tuple[Action, ...]


def make_sequence(actions: Iterable[Action]) -> Sequence:
    """ Validates and freezes a list of actions """
    sequence = tuple(actions)
    for i, action in enumerate(sequence):
        if not isinstance(action, Action) or type(action) is Action:
            raise ValueError(f"Step {i} is not an action: {action!r}")
    return sequence


# name -> (class, takes an argument)
_ACTION_TYPES = {
    Takeoff.name: (Takeoff, False),
    Land.name: (Land, False),
    Stop.name: (Stop, False),
    Rotate.name: (Rotate, True),
    Wait.name: (Wait, True),
}


def action_from_spec(item) -> Action:
    """ Builds an action from its config form, ex "land", {"wait": 3000} or {"rotate": 0.5} """
    if isinstance(item, str):
        name, value = item, None
    elif isinstance(item, dict) and len(item) == 1:
        name, value = next(iter(item.items()))
    else:
        raise ValueError(f"Malformed action entry: {item!r}")

    name = str(name).lower()
    if name not in _ACTION_TYPES:
        raise ValueError(f"Unknown action '{name}'")

    cls, takes_arg = _ACTION_TYPES[name]
    if not takes_arg:
        if value is not None:
            raise ValueError(f"Action '{name}' takes no argument")
        return cls()

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Action '{name}' needs a numeric argument, got {value!r}")
    return cls(value)


def parse_sequence(items) -> Sequence:
    """ Builds a sequence from a list of config entries """
    if not isinstance(items, (list, tuple)):
        raise ValueError("A sequence must be a list of actions")
    return make_sequence(action_from_spec(item) for item in items)
