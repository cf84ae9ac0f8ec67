import pytest

from navigation.tracking.nav_config import NavConfig
from navigation.tracking.off_route import OffRouteDetector


@pytest.fixture
def detector():
    return OffRouteDetector()


@pytest.fixture
def away(origin, offset):
    """Raw position distance_m east of the route point at origin."""
    return lambda distance_m: offset(origin, 90.0, distance_m)


def test_within_threshold(detector, origin, away):
    decision = detector.evaluate(away(10.0), origin)
    assert not decision.is_off_route
    assert not decision.should_reroute
    assert decision.reason == "within_threshold"


def test_single_fix_is_not_enough(detector, origin, away):
    first = detector.evaluate(away(40.0), origin)
    assert not first.is_off_route
    assert first.reason == "waiting_confirm_1"

    second = detector.evaluate(away(40.0), origin)
    assert second.is_off_route
    assert not second.should_reroute
    assert second.reason == "offroute_hold"


def test_reroute_after_confirmation(detector, origin, away):
    raw = away(100.0)
    detector.evaluate(raw, origin)
    decision = detector.evaluate(raw, origin)

    assert decision.is_off_route
    assert decision.should_reroute
    assert decision.reason == "reroute"
    assert detector.last_reroute_position == raw
    assert detector.confirm_counter == 0


def test_close_fix_resets_counter(detector, origin, away):
    detector.evaluate(away(40.0), origin)
    detector.evaluate(away(5.0), origin)
    assert detector.confirm_counter == 0
    assert detector.evaluate(away(40.0), origin).reason == "waiting_confirm_1"


class TestRerouteProtection:
    @pytest.fixture(autouse=True)
    def _rerouted(self, detector, origin, away):
        self.detector = detector
        self.origin = origin
        self.raw = away(100.0)
        detector.evaluate(self.raw, origin)
        detector.evaluate(self.raw, origin)

    def test_suppressed_near_reroute_position(self, offset):
        nearby = offset(self.raw, 0.0, 20.0)
        for _ in range(3):
            decision = self.detector.evaluate(nearby, self.origin)
            assert decision.reason == "recent_reroute_protection"
            assert not decision.is_off_route

    def test_counting_resumes_outside_protection(self, offset):
        farther = offset(self.raw, 0.0, 80.0)
        assert self.detector.evaluate(farther, self.origin).reason == "waiting_confirm_1"

    def test_reset_keeps_protection(self):
        self.detector.reset()
        assert self.detector.last_reroute_position == self.raw
        assert self.detector.evaluate(self.raw, self.origin).reason == "recent_reroute_protection"

    def test_clear_reroute_protection(self):
        self.detector.clear_reroute_protection()
        assert self.detector.last_reroute_position is None
        assert self.detector.evaluate(self.raw, self.origin).reason == "waiting_confirm_1"


def test_thresholds_from_config(origin, away):
    detector = OffRouteDetector(config=NavConfig(confirm_count_required=1, reroute_threshold_m=200.0))
    decision = detector.evaluate(away(100.0), origin)
    assert decision.is_off_route
    assert decision.reason == "offroute_hold"


def test_decision_serialises(detector, origin, away):
    assert detector.evaluate(away(1.0), origin).to_dict() == {
        "is_off_route": False,
        "should_reroute": False,
        "reason": "within_threshold",
    }
