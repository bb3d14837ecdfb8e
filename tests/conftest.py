import sys
import os
import time
from threading import Lock, Timer

import pytest

# Ensure the package is importable without pip install
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))

from flightseq.drone_control.client import DroneClient


class RecordingClient(DroneClient):
    """
    Drone client double that records dispatch times and how many commands
    are unacknowledged at once.

    behaviors maps a command name to one of:
        "fail"   ack with failure
        "hang"   never ack
        "raise"  raise from the client call
        "double" ack twice
        "late"   ack after `late_latency`
    """

    def __init__(self, latency=0.01, behaviors=None, late_latency=0.3):
        self.latency = latency
        self.late_latency = late_latency
        self.behaviors = behaviors or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.telemetry_handlers = []
        self._lock = Lock()

    @property
    def names(self):
        return [name for name, _ in self.calls]

    def times_of(self, name):
        return [t for n, t in self.calls if n == name]

    def _command(self, name, callback):
        behavior = self.behaviors.get(name)
        with self._lock:
            self.calls.append((name, time.monotonic()))
        if behavior == "raise":
            raise RuntimeError(f"{name} exploded")
        if behavior == "hang":
            return

        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

        def ack():
            with self._lock:
                self.in_flight -= 1
            if callback is None:
                return
            callback(behavior != "fail")
            if behavior == "double":
                callback(True)

        timer = Timer(self.late_latency if behavior == "late" else self.latency, ack)
        timer.daemon = True
        timer.start()

    def takeoff(self, callback=None):
        self._command("takeoff", callback)

    def land(self, callback=None):
        self._command("land", callback)

    def stop(self, callback=None):
        self._command("stop", callback)

    def rotate(self, speed, callback=None):
        self._command("rotate", callback)

    def on_telemetry(self, handler):
        self.telemetry_handlers.append(handler)


@pytest.fixture
def recording_client():
    return RecordingClient()
