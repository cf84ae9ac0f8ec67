import json

import pytest

from navigation.tracking.models import OffRouteDecision
from navigation.tracking.nav_config import NavConfig
from navigation.tracking.nav_logger import NavLogger
from navigation.tracking.progress_processor import RouteProgressProcessor


@pytest.fixture
def config(tmp_path):
    return NavConfig(log_dir=str(tmp_path / "logs"))


@pytest.fixture
def nav_logger(config):
    return NavLogger(config)


def test_route_round_trip(nav_logger, config, line, make_route):
    route = make_route(line(12, 10.0), (0, 6))
    assert nav_logger.save_route(route)

    with open(config.route_filepath, encoding="utf-8") as f:
        saved = json.load(f)
    assert saved["point_count"] == 12
    assert saved["maneuver_count"] == 2

    loaded = nav_logger.load_route()
    assert loaded is not route
    assert loaded.points == route.points
    assert loaded.maneuvers == route.maneuvers
    assert loaded.summary == route.summary


def test_load_missing_file(nav_logger, tmp_path):
    assert nav_logger.load_route(str(tmp_path / "missing.json")) is None


def test_load_rejects_invalid_route(nav_logger, config, line, make_route):
    route = make_route(line(3, 10.0), (0,))
    data = route.to_dict()
    data["maneuvers"][0]["point_index"] = 99
    with open(config.route_filepath, "w", encoding="utf-8") as f:
        json.dump({"route": data}, f)

    assert nav_logger.load_route() is None


def test_log_event_appends_lines(nav_logger, config, line, make_route, fix_at):
    points = line(12, 10.0)
    route = make_route(points, (0, 6))
    processor = RouteProgressProcessor()
    decision = OffRouteDecision(False, False, "within_threshold")

    for point in points[:2]:
        location = fix_at(point)
        nav_logger.log_event(location, processor.build_progress(route, location), decision)
    nav_logger.log_event(location, processor.route_progress)

    with open(config.session_filepath, encoding="utf-8") as f:
        entries = [json.loads(row) for row in f]

    assert len(entries) == 3
    assert entries[0]["progress"]["maneuver_index"] == 0
    assert entries[1]["off_route"]["reason"] == "within_threshold"
    assert entries[2]["off_route"] is None
    assert entries[1]["lat"] == points[1].lat
