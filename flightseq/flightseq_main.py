#!/usr/bin/env python3

import sys
import argparse
from threading import Event
from loguru import logger as log
from flightseq import (Drone, SimDrone, FlightConfig, TimedActionSequencer,
                       FLIGHTS, display_sensor_data)


# init pretty logging
logger_format = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)


def setup_logging(level="INFO"):
    log.remove()
    log.add(sys.stderr, level=level, format=logger_format)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Fly a timed sequence of drone actions")
    parser.add_argument("--config", help="YAML flight config")
    parser.add_argument("--flight", choices=sorted(FLIGHTS), help="named flight plan")
    parser.add_argument("--duration", type=float, help="hover time of the flight (ms)")
    parser.add_argument("--sim", action="store_true", default=None, help="fly the simulated drone")
    parser.add_argument("--connection", help="mavlink connection string")
    parser.add_argument("--verbose", action="store_true", default=None, help="log all telemetry")
    parser.add_argument("--step-timeout", type=float, help="max time to wait for an action ack (ms)")
    return parser.parse_args(argv)


def load_config(args) -> FlightConfig:
    """ Config file values, overridden by any command line flags """
    config = FlightConfig.from_yaml(args.config) if args.config else FlightConfig()
    overrides = {
        "flight": args.flight,
        "duration_ms": args.duration,
        "simulate": args.sim,
        "connection_string": args.connection,
        "verbose": args.verbose,
        "step_timeout_ms": args.step_timeout,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    if args.flight is not None:
        config.sequence = None
    return config


def make_client(config: FlightConfig):
    if config.simulate:
        log.info("Using simulated drone")
        return SimDrone()
    return Drone(connection_string=config.connection_string,
                 baudrate=config.baudrate)


def fly(client, config: FlightConfig) -> bool:
    """ Runs the configured sequence and blocks until its terminal callback has fired """
    if config.verbose:
        log.info("Verbose")
        display_sensor_data(client)

    sequence = config.build_sequence()
    sequencer = TimedActionSequencer(client,
                                     step_timeout_ms=config.step_timeout_ms,
                                     safety_timeout_ms=config.safety_timeout_ms)

    handle = sequencer.run(sequence,
                           on_complete=lambda: log.success("End of Flight"),
                           on_error=lambda kind: log.error(f"Flight aborted: {kind.name}"))
    try:
        handle.wait()
    except KeyboardInterrupt:
        log.error("Keyboard interrupt, cancelling flight...")
        handle.cancel()
        handle.wait()

    return handle.error is None


def main(argv=None):
    args = parse_args(argv)
    config = load_config(args)
    setup_logging(config.log_level)

    log.info("Flight")
    client = make_client(config)
    try:
        ok = fly(client, config)
    except Exception as e:
        log.error("Exception caught, landing drone...")
        log.exception(e)
        landed = Event()
        client.land(lambda ok: landed.set())
        landed.wait(10)
        ok = False
    finally:
        client.close()
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
