from flightseq.drone_control.client import DroneClient
from flightseq.drone_control.drone import Drone
from flightseq.drone_control.sim_drone import SimDrone

from flightseq.sequencing.actions import Action, Takeoff, Land, Stop, Rotate, Wait, Sequence
from flightseq.sequencing.sequencer import TimedActionSequencer, Handle, ErrorKind, SequencerError, AlreadyRunningError
from flightseq.sequencing.flights import FLIGHTS, build_flight

from flightseq.config import FlightConfig
from flightseq.telemetry import display_sensor_data
