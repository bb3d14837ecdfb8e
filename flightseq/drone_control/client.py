#!/usr/bin/env python3

import abc
from typing import Callable, Optional

AckCallback = Optional[Callable[[bool], None]]


class DroneClient(abc.ABC):
    """ Asynchronous drone interface. Callbacks fire once with True on ack, False on failure """

    @abc.abstractmethod
    def takeoff(self, callback: AckCallback = None):
        """ Arm and climb to the hover altitude """
        pass

    @abc.abstractmethod
    def land(self, callback: AckCallback = None):
        """ Land and disarm """
        pass

    @abc.abstractmethod
    def stop(self, callback: AckCallback = None):
        """ Cancel all movement and hover in place """
        pass

    @abc.abstractmethod
    def rotate(self, speed: float, callback: AckCallback = None):
        """ Yaw in place at a normalized speed in [-1, 1] """
        pass

    @abc.abstractmethod
    def on_telemetry(self, handler: Callable[[dict], None]):
        """ Registers a function called with every telemetry event """
        pass

    def close(self):
        """ Release the connection to the drone """
        pass
