"""
Action and sequence model tests
"""

import pytest

from flightseq.sequencing.actions import (Takeoff, Land, Stop, Rotate, Wait, make_sequence,
                                          action_from_spec, parse_sequence)


class TestActions:
    """Action values."""

    def test_actions_are_values(self):
        assert Takeoff() == Takeoff()
        assert Rotate(0.5) == Rotate(0.5)
        assert Wait(3000) != Wait(2000)
        assert len({Land(), Land(), Stop()}) == 2

    def test_actions_are_immutable(self):
        wait = Wait(3000)
        with pytest.raises(AttributeError):
            wait.duration_ms = 10

    def test_rotate_range(self):
        Rotate(-1.0)
        Rotate(1.0)
        with pytest.raises(ValueError):
            Rotate(1.5)

    def test_negative_wait(self):
        with pytest.raises(ValueError):
            Wait(-1)

    @pytest.mark.parametrize("duration", [float("nan"), float("inf"), 1e15])
    def test_unusable_wait(self, duration):
        with pytest.raises(ValueError):
            Wait(duration)

    def test_wait_seconds(self):
        assert Wait(2500).seconds == 2.5

    def test_wait_is_not_dispatchable(self, recording_client):
        with pytest.raises(NotImplementedError):
            Wait(10).dispatch(recording_client, None)

    def test_dispatch_reaches_client(self, recording_client):
        for action in (Takeoff(), Rotate(0.1), Stop(), Land()):
            action.dispatch(recording_client, None)
        assert recording_client.names == ["takeoff", "rotate", "stop", "land"]


class TestSequences:
    """Building sequences from code and config."""

    def test_make_sequence_freezes(self):
        actions = [Takeoff(), Wait(10), Land()]
        sequence = make_sequence(actions)
        actions.append(Stop())
        assert sequence == (Takeoff(), Wait(10), Land())

    def test_make_sequence_rejects_junk(self):
        with pytest.raises(ValueError):
            make_sequence([Takeoff(), 3000])

    def test_action_from_spec(self):
        assert action_from_spec("takeoff") == Takeoff()
        assert action_from_spec("LAND") == Land()
        assert action_from_spec({"wait": 3000}) == Wait(3000)
        assert action_from_spec({"rotate": 0.5}) == Rotate(0.5)
        assert action_from_spec({"stop": None}) == Stop()

    @pytest.mark.parametrize("item", [
        "jump",
        {"wait": "long"},
        {"wait": True},
        {"rotate": None},
        {"land": 5},
        {"wait": 10, "land": None},
        42,
    ])
    def test_action_from_spec_rejects(self, item):
        with pytest.raises(ValueError):
            action_from_spec(item)

    def test_parse_sequence(self):
        sequence = parse_sequence(["takeoff", {"wait": 5000}, {"rotate": 0.5},
                                   {"wait": 3000}, "stop", "land"])
        assert sequence == (Takeoff(), Wait(5000), Rotate(0.5), Wait(3000), Stop(), Land())

    def test_parse_sequence_needs_list(self):
        with pytest.raises(ValueError):
            parse_sequence("takeoff")
