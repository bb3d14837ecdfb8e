#!/usr/bin/env python3

import time
import numpy as np
from loguru import logger as log
from threading import Thread, Lock, Event, Timer
from flightseq.drone_control.client import DroneClient


class SimDrone(DroneClient):
    """ In-process quadcopter stand-in, acks commands after `latency` seconds """

    def __init__(self,
                 latency=0.5,
                 takeoff_altitude=1.0,
                 max_yaw_dps=90,
                 telemetry_hz=5,
                 fail_on=(),
                 hang_on=()):
        """Construct a new SimDrone

        Args:
            latency (float, optional): Seconds between a command and its ack. Defaults to 0.5.
            takeoff_altitude (float, optional): Hover altitude after takeoff (m). Defaults to 1.0.
            max_yaw_dps (float, optional): Yaw rate for a rotate speed of 1.0. Defaults to 90.
            telemetry_hz (float, optional): Telemetry rate, 0 disables it. Defaults to 5.
            fail_on (iterable, optional): Command names that ack with a failure. Defaults to ().
            hang_on (iterable, optional): Command names that never ack. Defaults to ().
        """
        self.latency = latency
        self.takeoff_altitude = takeoff_altitude
        self.max_yaw_dps = max_yaw_dps
        self.fail_on = set(fail_on)
        self.hang_on = set(hang_on)

        self.flying = False
        self.altitude = 0.0
        self.yaw_rate = 0.0 # deg/s
        self.yaw = 0.0 # deg

        self._commands = []
        self._telemetry_handlers = []
        self._timers = []
        self._lock = Lock()
        self._closed = Event()
        self._telemetry_hz = telemetry_hz
        self._last_update = time.time()

        if telemetry_hz > 0:
            self._main_thread = Thread(target=self._run, daemon=True)
            self._main_thread.start()

    @property
    def commands(self):
        """ Names of every command received, in order """
        with self._lock:
            return list(self._commands)

    def _run(self):
        """ Publish telemetry at telemetry_hz """
        while not self._closed.wait(1.0 / self._telemetry_hz):
            data = self.telemetry()
            for handler in list(self._telemetry_handlers):
                try:
                    handler(data)
                except Exception as e:
                    log.exception(e)

    def telemetry(self):
        """ Snapshot of the simulated state """
        with self._lock:
            self._integrate()
            return {
                "time": time.time(),
                "flying": self.flying,
                "altitude": self.altitude,
                "yaw": self.yaw,
                "yaw_rate": self.yaw_rate,
            }

    def _integrate(self):
        now = time.time()
        self.yaw = float(np.mod(self.yaw + self.yaw_rate * (now - self._last_update), 360.0))
        self._last_update = now

    def _command(self, name, callback, effect=None):
        """ Records the command and schedules its ack """
        with self._lock:
            self._commands.append(name)
        log.debug(f"SimDrone received {name}")

        if name in self.hang_on:
            log.debug(f"SimDrone dropping ack for {name}")
            return

        ok = name not in self.fail_on

        def acknowledge():
            if self._closed.is_set():
                return
            if ok and effect is not None:
                with self._lock:
                    self._integrate()
                    effect()
            if callback is not None:
                callback(ok)

        timer = Timer(self.latency, acknowledge)
        timer.daemon = True
        self._timers.append(timer)
        timer.start()

###################
# DroneClient interface
###################

    def takeoff(self, callback=None):
        def effect():
            self.flying = True
            self.altitude = self.takeoff_altitude
        self._command("takeoff", callback, effect)

    def land(self, callback=None):
        def effect():
            self.flying = False
            self.altitude = 0.0
            self.yaw_rate = 0.0
        self._command("land", callback, effect)

    def stop(self, callback=None):
        def effect():
            self.yaw_rate = 0.0
        self._command("stop", callback, effect)

    def rotate(self, speed, callback=None):
        def effect():
            self.yaw_rate = float(np.clip(speed, -1.0, 1.0)) * self.max_yaw_dps
        self._command("rotate", callback, effect)

    def on_telemetry(self, handler):
        self._telemetry_handlers.append(handler)

    def close(self):
        """ Stops telemetry and drops pending acks """
        self._closed.set()
        for timer in self._timers:
            timer.cancel()
