"""
Verbose telemetry output
"""

from loguru import logger as log


def _log_sink(data):
    log.info(f"telemetry: {data}")


def display_sensor_data(client, sink=None):
    """ Forward every telemetry event from `client` to `sink` as is (defaults to the log) """
    if sink is None:
        sink = _log_sink
    client.on_telemetry(sink)
    log.debug("Telemetry forwarding enabled")
    return sink
