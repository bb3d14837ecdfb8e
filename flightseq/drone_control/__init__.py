from flightseq.drone_control.client import DroneClient
from flightseq.drone_control.sim_drone import SimDrone
from flightseq.drone_control.drone import Drone
