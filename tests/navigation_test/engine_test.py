import logging
import math
import threading
import time

import pytest

from navigation.tracking.engine import NavigationEngine
from navigation.tracking.fix_source import QueueFixSource, SimulatedFixSource
from navigation.tracking.models import Fix, InvalidFixError
from navigation.tracking.nav_config import NavConfig


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def points(line):
    return line(40, 8.0)


@pytest.fixture
def route(points, make_route):
    return make_route(points, (0, 10, 20, 30))


@pytest.fixture
def engine():
    engine = NavigationEngine()
    yield engine
    engine.close()


@pytest.fixture
def received(engine):
    records = []
    engine.add_progress_listener(lambda location, progress: records.append((location, progress)))
    return records


class TestPushMode:
    def test_idle_engine(self, engine, points):
        assert engine.current_progress() is None
        assert not engine.is_running()
        assert engine.on_fix(Fix(points[0].lat, points[0].lon)) is None
        assert engine.relocalize(Fix(points[0].lat, points[0].lon)) is None

    def test_updates_are_delivered_in_order(self, engine, route, points, received, fix_at):
        initial = engine.start(route)
        assert engine.is_running()
        assert initial.polyline_index == 0

        results = [engine.on_fix(fix_at(p)) for p in points[1:6]]
        engine.flush()

        assert [progress for _, progress in received] == [initial] + [r[1] for r in results]
        assert engine.current_progress() is results[-1][1]
        assert engine.previous_progress() is results[-2][1]

    def test_published_location_is_snapped(self, engine, route, points, offset, fix_at):
        engine.start(route)
        location, progress, decision = engine.on_fix(fix_at(offset(points[3], 90.0, 3.0)))

        assert not decision.is_off_route
        assert location.lon == pytest.approx(points[0].lon, abs=1e-7)
        assert location.heading_deg == pytest.approx(0.0, abs=0.5)
        assert engine.last_decision() is decision

    def test_snapping_can_be_disabled(self, route, points, offset, fix_at):
        engine = NavigationEngine(NavConfig(snap_to_route=False))
        try:
            engine.start(route)
            location, _, _ = engine.on_fix(fix_at(offset(points[3], 90.0, 20.0)))
            assert location.lon > points[0].lon
        finally:
            engine.close()

    def test_invalid_fix_changes_nothing(self, engine, route, points, fix_at):
        engine.start(route)
        engine.on_fix(fix_at(points[2]))
        before = engine.current_progress()
        filter_state = engine.location_filter.state

        with pytest.raises(InvalidFixError):
            engine.on_fix(Fix(math.nan, points[2].lon))
        with pytest.raises(InvalidFixError):
            engine.on_fix(Fix(points[2].lat, 181.0))

        assert engine.current_progress() is before
        assert engine.location_filter.state == filter_state

    def test_non_finite_accuracy_does_not_break_session(self, engine, route, points, fix_at):
        engine.start(route)
        engine.on_fix(fix_at(points[2]))

        location, progress, decision = engine.on_fix(fix_at(points[3], accuracy=math.nan))
        assert math.isfinite(location.lat) and math.isfinite(location.lon)

        location, progress, decision = engine.on_fix(fix_at(points[4]))
        assert math.isfinite(location.lat) and math.isfinite(location.lon)
        assert math.isfinite(progress.distance_remaining)
        assert not decision.is_off_route

    def test_off_route_listener(self, engine, route, points, offset, fix_at):
        off_route = []
        engine.add_off_route_listener(off_route.append)
        engine.start(route)

        far = fix_at(offset(points[2], 90.0, 200.0))
        _, _, first = engine.on_fix(far)
        location, _, second = engine.on_fix(far)
        engine.flush()

        assert first.reason == "waiting_confirm_1"
        assert second.reason == "reroute"
        assert off_route == [location]
        # off route and not simulated: the filtered fix is published unsnapped
        assert location.lon > points[0].lon

    def test_stop_is_idempotent(self, engine, route, points, received, fix_at):
        engine.start(route)
        engine.stop()
        engine.stop()
        delivered = len(received)

        assert not engine.is_running()
        assert engine.on_fix(fix_at(points[1])) is None
        engine.flush()
        assert len(received) == delivered

    def test_stop_from_listener(self, engine, route):
        engine.add_progress_listener(lambda location, progress: engine.stop())
        engine.start(route)
        engine.flush()
        assert not engine.is_running()

    def test_restart_with_new_route(self, engine, route, line, make_route, fix_at, points):
        engine.start(route)
        engine.on_fix(fix_at(points[9]))

        other = make_route(line(20, 8.0), (0, 5))
        engine.start(other)
        assert engine.route is other
        assert engine.current_progress().route is other
        assert engine.current_progress().maneuver_index == 0

    def test_relocalize(self, engine, route, points):
        engine.start(route)
        snap = engine.relocalize(Fix(points[25].lat, points[25].lon))
        assert snap.polyline_index == 25


class TestFixSources:
    def test_simulated_drive(self, engine, route, points, received):
        off_route = []
        engine.add_off_route_listener(off_route.append)

        engine.start(route, fix_source=SimulatedFixSource(route, interval_s=0.0))
        assert wait_until(lambda: not engine.is_running())
        engine.flush()

        # initial fix plus one per route point
        assert len(received) == len(points) + 1
        indices = [progress.maneuver_index for _, progress in received]
        assert indices == sorted(indices)
        assert indices[-1] >= 2
        assert off_route == []
        assert all(location.heading_deg is not None for location, _ in received)

    def test_queue_source(self, engine, route, points, received, fix_at):
        source = QueueFixSource()
        initial = engine.start(route, fix_source=source)

        source.push(fix_at(points[3]))
        assert wait_until(lambda: engine.current_progress() is not initial)

        engine.stop()
        assert source.closed
        assert not engine.is_running()

        delivered = len(received)
        source.push(fix_at(points[4]))
        time.sleep(0.05)
        assert len(received) == delivered

    def test_invalid_fixes_from_source_are_dropped(self, engine, route, points, fix_at):
        source = QueueFixSource()
        initial = engine.start(route, fix_source=source)

        source.push(Fix(math.nan, math.nan))
        source.push(fix_at(points[3]))
        assert wait_until(lambda: engine.current_progress() is not initial)
        assert engine.current_progress().polyline_index > 0

    def test_listener_runs_off_the_worker_thread(self, engine, route):
        threads = []
        engine.add_progress_listener(lambda location, progress: threads.append(threading.current_thread().name))
        engine.start(route, fix_source=SimulatedFixSource(route, interval_s=0.0))
        assert wait_until(lambda: not engine.is_running())
        engine.flush()

        assert threads
        assert all(name.startswith("nav-dispatch") for name in threads)

    def test_closed_source_gives_an_empty_session(self, engine, route, received, caplog):
        source = SimulatedFixSource(route, interval_s=0.0)
        source.close()

        with caplog.at_level(logging.WARNING):
            engine.start(route, fix_source=source)
        assert "already closed" in caplog.text

        assert wait_until(lambda: not engine.is_running())
        engine.flush()
        assert len(received) == 1
