#!/usr/bin/env python3

import os
import time
import numpy as np
from threading import Thread, Lock, Event
from pymavlink import mavutil
from loguru import logger as log
from dataclasses import dataclass
from pymavlink.dialects.v20 import ardupilotmega as mavlink

from flightseq.drone_control.client import DroneClient

# mavutil reference: https://mavlink.io/en/mavgen_python
# MAVLink messages: https://mavlink.io/en/messages/common.html
# ArduPilot: https://ardupilot.org/dev/docs/copter-commands-in-guided-mode.html

@dataclass
class DroneState():
    armed = False


class Drone(DroneClient):
    def __init__(self,
                 connection_string="udpin:0.0.0.0:14551",
                 baudrate=115200,
                 takeoff_altitude=1.0,
                 max_yaw_dps=90,
                 max_accel=50,
                 command_timeout=30,
                 land_timeout=60,
                 abort_timeout=2):
        """Construct a new Drone object and connect to a mavlink sink/source

        Args:
            connection_string (str, optional): pymavlink connection string. Defaults to "udpin:0.0.0.0:14551".
            baudrate (int, optional): Serial baudrate. Defaults to 115200.
            takeoff_altitude (float, optional): Hover altitude after takeoff (m). Defaults to 1.0.
            max_yaw_dps (float, optional): Yaw rate for a rotate speed of 1.0. Defaults to 90.
            max_accel (int, optional): WPNAV_ACCEL (cm/s/s). Defaults to 50.
            command_timeout (float, optional): Max time for armable checks and the takeoff climb (s). Defaults to 30.
            land_timeout (float, optional): Max time to wait for touchdown (s). Defaults to 60.
            abort_timeout (float, optional): Max time a land waits for a running command to give up the link (s). Defaults to 2.
        """

        # init variables
        self._mav_state = mavlink.MAV_STATE_UNINIT
        self._state = DroneState()
        self._start_time = time.time()
        self._max_accel = max_accel
        self._telemetry_handlers = []
        self._cmd_lock = Lock() # held by whoever reads from mav_conn
        self._abort = Event()
        self._closed = Event()
        self._recv_thread = None
        self.takeoff_altitude = takeoff_altitude
        self.max_yaw_dps = max_yaw_dps
        self.command_timeout = command_timeout
        self.land_timeout = land_timeout
        self.abort_timeout = abort_timeout

        # setup vehicle communication connection
        # https://mavlink.io/en/mavgen_python/#setting_up_connection
        log.info(f"Connecting to drone on {connection_string}")
        os.environ["MAVLINK20"] = "1" # force mavlink 2.0 hopefully
        self.mav_conn: mavutil.mavfile = mavutil.mavlink_connection(
                                                  connection_string,
                                                  baud=baudrate,
                                                  dialect="ardupilotmega",
                                                  autoreconnect=True,
                                                  source_component=mavlink.MAV_COMP_ID_ONBOARD_COMPUTER,
                                                  source_system=1)
        self.mav_conn.message_hooks.append(self._mav_msg_handler)
        self.mav_conn.target_system = 1 # sysid of drone

        # start thread for sending heartbeats
        self._main_thread = Thread(target=self._run, daemon=True)
        self._main_thread.start()

        # wait for a heartbeat from the drone (aka it is connected)
        self.wait_heartbeat()
        log.info(f"Drone connected (system {self.mav_conn.target_system} "
                 f"component {self.mav_conn.target_component})")

        # set stream rates to be faster
        self.set_stream_rate(   4, mavlink.MAV_DATA_STREAM_ALL)
        self.set_message_rate( 20, mavlink.MAVLINK_MSG_ID_GLOBAL_POSITION_INT)
        self.set_message_rate( 20, mavlink.MAVLINK_MSG_ID_ATTITUDE)

        self.param_set("WPNAV_ACCEL", self._max_accel)

        # set the system status to active
        self._mav_state = mavlink.MAV_STATE_ACTIVE
        self.send_statustext("flightseq: Drone online")

        # keep reading the link between commands so telemetry keeps flowing
        self._recv_thread = Thread(target=self._recv_loop, daemon=True)
        self._recv_thread.start()

    def _recv_loop(self):
        """ Pumps incoming messages through the message hooks while no command is reading """
        while not self._closed.is_set():
            if not self._cmd_lock.acquire(timeout=0.1):
                continue
            try:
                self.mav_conn.recv_match(blocking=True, timeout=0.1)
            except Exception as e:
                log.exception(e)
            finally:
                self._cmd_lock.release()
            time.sleep(0.001) # let a waiting command grab the link

    def _run(self):
        """ Continuously send heartbeats to the drone at 2Hz """
        while not self._closed.is_set():
            self.mav_conn.mav.heartbeat_send(
                mavlink.MAV_TYPE_ONBOARD_CONTROLLER,
                mavlink.MAV_AUTOPILOT_INVALID,
                0,
                0,
                self._mav_state)

            self._closed.wait(0.5)

    def _mav_msg_handler(self, mav, msg):
        """ Function called for every new mavlink message
            (called within self.connection.recv_match())
        """
        type = msg.get_type()
        if type == "HEARTBEAT" and msg.get_srcComponent() == 1: # HEARTBEAT from drone
            self._state.armed = bool(msg.base_mode & mavlink.MAV_MODE_FLAG_SAFETY_ARMED)

        if self._telemetry_handlers and type != "BAD_DATA":
            data = msg.to_dict()
            for handler in list(self._telemetry_handlers):
                try:
                    handler(data)
                except Exception as e:
                    log.exception(e)

###################
# DroneClient interface
###################

    def takeoff(self, callback=None):
        self._run_async("takeoff", callback, self.arm_takeoff, self.takeoff_altitude)

    def land(self, callback=None):
        # takes the link from whatever command is running
        self._run_async("land", callback, self._preempt_land, lock=False)

    def stop(self, callback=None):
        """ Sends the zero velocity setpoint right away, without waiting for the link """
        try:
            ok = self.hard_stop(blocking=False)
        except Exception as e:
            log.exception(e)
            ok = False
        if callback is not None:
            callback(ok)

    def rotate(self, speed, callback=None):
        self._run_async("rotate", callback, self.yaw_rate, speed * self.max_yaw_dps)

    def on_telemetry(self, handler):
        self._telemetry_handlers.append(handler)

    def close(self):
        """ Stops the heartbeat and receive threads and closes the mavlink connection """
        self._closed.set()
        self._mav_state = mavlink.MAV_STATE_POWEROFF
        if self._recv_thread is not None:
            self._recv_thread.join(1)
        self.mav_conn.close()

    def _run_async(self, name, callback, func, *args, lock=True):
        """ Runs a blocking routine on a worker thread and reports its result to callback """
        def worker():
            try:
                if lock:
                    with self._cmd_lock:
                        self._abort.clear() # an abort only targets the command it interrupted
                        ok = bool(func(*args))
                else:
                    ok = bool(func(*args))
            except Exception as e:
                log.exception(e)
                ok = False
            if not ok:
                log.warning(f"Drone {name} failed")
            if callback is not None:
                callback(ok)

        Thread(target=worker, daemon=True).start()

    def _preempt_land(self):
        """ Aborts the running command, then lands once it has released the link """
        self._abort.set()
        self.velocity_NEU(0, 0, 0, yaw_rate=0)

        if not self._cmd_lock.acquire(timeout=self.abort_timeout):
            log.error("Running command did not release the link, sending land blind")
            self.send_command_long(mavlink.MAV_CMD_NAV_LAND)
            return False

        try:
            self._abort.clear()
            return self.land_blocking()
        finally:
            self._cmd_lock.release()

    def _aborted(self):
        return self._abort.is_set() or self._closed.is_set()

###################
# Mavlink functions
###################

    def send_command_long(self, command, param1=0,
                          param2=0, param3=0,
                          param4=0, param5=0,
                          param6=0, param7=0,
                          wait_ack=False,
                          retries=2):
        """ Send a command to the drone """

        self.mav_conn.mav.command_long_send(
            self.mav_conn.target_system,  # target_system
            mavlink.MAV_COMP_ID_AUTOPILOT1,  # target_component
            command,  # command
            0,  # confirmation
            param1,
            param2,
            param3,
            param4,
            param5,
            param6,
            param7)

        if wait_ack:
            ack = self.mav_conn.recv_match(
                                type='COMMAND_ACK',
                                condition=f'COMMAND_ACK.command=={command}',
                                blocking=True, timeout=1)

            if retries > 0 and not self._aborted() and (ack is None or ack.result != mavlink.MAV_RESULT_ACCEPTED):
                log.debug(f"Retrying command {command}...")
                return self.send_command_long(command, param1, param2, param3, param4,
                                       param5, param6, param7,
                                       wait_ack, retries-1)

            if ack is None:
                log.warning(f"Failed to receive ack for command {command}")
                return False
            return ack.result == mavlink.MAV_RESULT_ACCEPTED

        return True

    def set_stream_rate(self, hz, stream=mavlink.MAV_DATA_STREAM_ALL):
        """ Set the stream rate of data from the drone """
        # https://ardupilot.org/dev/docs/mavlink-requesting-data.html
        # NOTE: mavproxy and the GCS will override this
        self.mav_conn.mav.request_data_stream_send(
            self.mav_conn.target_system,  # target_system
            mavlink.MAV_COMP_ID_AUTOPILOT1,  # target_component
            stream, # stream
            hz,     # rate
            1)      # start/stop

    def set_message_rate(self, hz, msg_id):
        """ Set the rate of a specific message from the drone """
        # https://mavlink.io/en/messages/common.html#MAV_CMD_SET_MESSAGE_INTERVAL
        ret = self.send_command_long(
            mavlink.MAV_CMD_SET_MESSAGE_INTERVAL,
            param1=msg_id,
            param2=1000000 / hz,
            wait_ack=True)
        if not ret:
            log.warning(f"Failed to set message rate ({msg_id}, {hz}hz)")

    def send_statustext(self, msg: str, severity=mavlink.MAV_SEVERITY_NOTICE):
        """ Sends a status message to all GCS """
        if len(msg) > 50:
            log.warning(f"Status msg truncated (len {len(msg)})")
            msg = msg[:50]

        self.mav_conn.mav.statustext_send(severity, msg.encode('ascii'))

    def param_set(self, parm_name, parm_value, param_type=None, retries=3):
        """ Wrapper for parameter send function"""

        for _ in range(retries):
            self.mav_conn.param_set_send(parm_name, parm_value, param_type)
            msg = self.mav_conn.recv_match(type='PARAM_VALUE',
                                             blocking=True,
                                             condition=f'PARAM_VALUE.param_id=="{parm_name}"',
                                             timeout=0.5)

            if msg is not None:
                return True

        log.error(f"Failed to set {parm_name} to {parm_value}")
        return False

##################
# Logic functions
##################

    def wait_heartbeat(self):
        """ Wait for a heartbeat from the drone """
        self.mav_conn.recv_match(type='HEARTBEAT', blocking=True)

    def wait_armable(self, timeout=None):
        """ Wait for a GPS fix and for the pre-arm checks to pass, returns False on timeout or abort """
        # https://mavlink.io/en/messages/common.html#SYS_STATUS
        deadline = time.time() + (timeout if timeout is not None else self.command_timeout)
        gps_fix = False
        sys_good_health = False
        while not (gps_fix and sys_good_health):
            if self._aborted():
                return False
            if time.time() > deadline:
                log.error(f"Drone not armable (gps fix: {gps_fix}, prearm checks: {sys_good_health})")
                return False

            msg = self.mav_conn.recv_match(type=['SYS_STATUS', 'GPS_RAW_INT'],
                                           blocking=True, timeout=0.5)
            if msg is None:
                continue
            if msg.get_type() == 'GPS_RAW_INT':
                gps_fix = msg.fix_type >= 3
            else:
                sys_good_health = bool(msg.onboard_control_sensors_health
                                       & mavlink.MAV_SYS_STATUS_PREARM_CHECK)
        return True

    def is_moving(self, min_speed=5, min_yawspeed=0.1):
        """ Checks if the drone is moving (speed is cm/s, rot in rad/s) """
        pos_msg = self.mav_conn.recv_match(type='GLOBAL_POSITION_INT',
                                            blocking=True, timeout=0.5)

        attitude_msg = self.mav_conn.recv_match(type='ATTITUDE', blocking=True, timeout=0.5)

        if pos_msg is None or attitude_msg is None:
            return False
        if (abs(pos_msg.vx) > min_speed or
            abs(pos_msg.vy) > min_speed or
            abs(pos_msg.vz) > min_speed or
            abs(attitude_msg.yawspeed) > min_yawspeed):
            return True
        return False

##################
# Config functions
##################

    def set_guided_mode(self):
        """ Set the drone to guided mode """
        # https://ardupilot.org/dev/docs/mavlink-get-set-flightmode.html
        return self.send_command_long(
                mavlink.MAV_CMD_DO_SET_MODE,
                param1=mavlink.MAV_MODE_FLAG_CUSTOM_MODE_ENABLED,
                param2=4,
                wait_ack=True)

##################
# Motion functions
##################

    def arm_takeoff(self, altitude=1.0, blocking=True):
        """ Arm the drone and take off to `altitude` meters """

        if not self.wait_armable():
            return False

        # go into guided mode so we can send position commands
        if not self.set_guided_mode():
            log.error("Failed to set guided mode")
            return False

        # https://mavlink.io/en/messages/common.html#MAV_CMD_COMPONENT_ARM_DISARM
        armed = self.send_command_long(
            mavlink.MAV_CMD_COMPONENT_ARM_DISARM,
            param1=1, wait_ack=True)

        if self._state.armed and not armed:
            log.warning("Taking off while already armed, but takeoff didn't go through")
            return False
        elif not armed:
            log.error("Failed to arm drone")
            return False

        log.info(f"Drone armed. Taking off to {altitude}m")

        taking_off = self.send_command_long(
                            mavlink.MAV_CMD_NAV_TAKEOFF,
                            param7=altitude,
                            wait_ack=True)

        if not taking_off:
            log.warning("Failed to takeoff")
            return False

        if blocking:
            # wait for the drone to reach the target altitude
            deadline = time.time() + self.command_timeout
            while True:
                if self._aborted():
                    log.warning("Takeoff aborted")
                    return False
                if time.time() > deadline:
                    log.error("Drone did not reach takeoff altitude")
                    return False
                msg = self.mav_conn.recv_match(type='GLOBAL_POSITION_INT',
                                                 blocking=True, timeout=0.5)
                if msg is not None and msg.relative_alt / 1000 > altitude * 0.95:
                    break
            log.info("Drone reached target takeoff altitude")

        return True

    def land_blocking(self, blocking=True):
        """ Land the drone """

        self.hard_stop(blocking=True)

        ack = self.send_command_long(
                    mavlink.MAV_CMD_NAV_LAND,
                    wait_ack=True)

        if not ack:
            log.error("Failed to land drone")
            return False

        if not blocking:
            return True

        log.info("Landing drone")
        deadline = time.time() + self.land_timeout
        while True:
            if self._aborted():
                log.warning("Landing interrupted")
                return False
            if time.time() > deadline:
                log.error("Touchdown not confirmed")
                return False
            msg = self.mav_conn.recv_match(type='GLOBAL_POSITION_INT',
                                             blocking=True, timeout=0.5)
            if msg is None:
                continue
            if msg.relative_alt / 1000 < 0.2 or not self._state.armed:
                break

        log.info("Touchdown")
        return True

    def velocity_NEU(self, north, east, up, yaw_rate=None, body_offset=False):
        """ Set the drone's velocity in NEU coordinates (yaw rate in rad/s) """

        if body_offset:
            frame = mavlink.MAV_FRAME_BODY_NED
        else:
            frame = mavlink.MAV_FRAME_LOCAL_NED

        # ignore yaw if arguments not provided
        ignore_yaw       = 0b010000000000
        ignore_yaw_rate  = 0b100000000000
        ignore_pos_accel = 0b000111000111

        if yaw_rate is not None:
            type_mask = ignore_pos_accel | ignore_yaw
        else:
            type_mask = ignore_pos_accel | ignore_yaw | ignore_yaw_rate

        # https://mavlink.io/en/messages/common.html#SET_POSITION_TARGET_LOCAL_NED
        self.mav_conn.mav.set_position_target_local_ned_send(
            int((time.time()-self._start_time)*1000),  # time_boot_ms
            self.mav_conn.target_system,  # target_system
            mavlink.MAV_COMP_ID_AUTOPILOT1,  # target_component
            frame,  # frame
            type_mask,  # type_mask
            0,  # x
            0,  # y
            0,  # z
            north,  # vx
            east,  # vy
            -up,  # vz
            0,  # afx
            0,  # afy
            0,  # afz
            0,  # yaw
            yaw_rate if yaw_rate is not None else 0)  # yaw_rate
        return True

    def yaw_rate(self, dps):
        """ Spin in place at `dps` degrees per second (positive is clockwise) """
        log.info(f"Rotating at {dps:.1f} deg/s")
        return self.velocity_NEU(0, 0, 0, yaw_rate=np.deg2rad(dps))

    def hard_stop(self, blocking=True, timeout=5):
        """ Hard stop the drone's movement, blocking waits (up to `timeout` s) until it holds still """
        self.velocity_NEU(0, 0, 0, yaw_rate=0)

        if blocking:
            deadline = time.time() + timeout
            while self.is_moving():
                if self._aborted() or time.time() > deadline:
                    log.warning("Drone still moving after stop")
                    break
                time.sleep(0.001)
        return True
