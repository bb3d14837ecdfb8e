"""
Flight configuration, loaded from YAML
"""

import yaml
from dataclasses import dataclass, fields
from typing import List, Optional
from loguru import logger as log

from flightseq.sequencing.actions import Sequence, parse_sequence
from flightseq.sequencing.flights import build_flight


@dataclass
class FlightConfig():
    """
    Settings for one flight
    """
    connection_string: str = "udpin:0.0.0.0:14551"
    baudrate: int = 115200
    simulate: bool = False
    verbose: bool = False
    log_level: str = "INFO"
    step_timeout_ms: Optional[float] = None
    safety_timeout_ms: Optional[float] = None
    flight: str = "proper_landing"
    duration_ms: Optional[float] = None
    sequence: Optional[List] = None # explicit action list, overrides flight

    @classmethod
    def from_dict(cls, values: dict):
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**values)

    @classmethod
    def from_yaml(cls, path):
        """ Load a config file, missing keys keep their defaults """
        with open(path, 'r') as stream:
            values = yaml.safe_load(stream) or {}
        if not isinstance(values, dict):
            raise ValueError(f"{path} must contain a mapping")
        log.debug(f"Loaded config from {path}")
        return cls.from_dict(values)

    def build_sequence(self) -> Sequence:
        """ The explicit sequence if there is one, else the named flight """
        if self.sequence is not None:
            return parse_sequence(self.sequence)
        return build_flight(self.flight, self.duration_ms)
