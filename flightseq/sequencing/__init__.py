from flightseq.sequencing.actions import (Action, Takeoff, Land, Stop, Rotate, Wait,
                                          Sequence, make_sequence, action_from_spec, parse_sequence)
from flightseq.sequencing.sequencer import (TimedActionSequencer, Handle, ErrorKind,
                                            SequencerError, AlreadyRunningError)
from flightseq.sequencing.flights import FLIGHTS, build_flight
