"""
Named flight plans
"""

from flightseq.sequencing.actions import Takeoff, Land, Stop, Rotate, Wait, make_sequence


def proper_landing(hover_ms=3000):
    """ Take off, hover, land """
    return make_sequence([Takeoff(), Wait(hover_ms), Land()])


def hover(duration_ms):
    """ Takeoff and landing are fixed, only the hover time varies """
    return proper_landing(duration_ms)


def hover_and_land(duration_ms):
    """ Hover then stop all movement before landing """
    return make_sequence([Takeoff(), Wait(duration_ms), Stop(), Land()])


def rotate_and_land(rotate_after_ms=5000, rotate_ms=3000, speed=0.5):
    """ Hover, spin clockwise for a bit, then stop and land """
    return make_sequence([
        Takeoff(),
        Wait(rotate_after_ms),
        Rotate(speed),
        Wait(rotate_ms),
        Stop(),
        Land(),
    ])


# name -> (builder, default duration in ms)
FLIGHTS = {
    "proper_landing": (proper_landing, 3000),
    "hover": (hover, 3000),
    "hover_and_land": (hover_and_land, 6000),
    "rotate_and_land": (rotate_and_land, 5000),
}


def build_flight(name, duration_ms=None):
    """ Build a named flight, `duration_ms` is the flight's main hover time """
    if name not in FLIGHTS:
        raise KeyError(f"Unknown flight '{name}' (known: {', '.join(sorted(FLIGHTS))})")
    builder, default_ms = FLIGHTS[name]
    return builder(default_ms if duration_ms is None else duration_ms)
