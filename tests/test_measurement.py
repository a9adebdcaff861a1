"""Tests for Edie measurements over lines, polygons, loop detectors and platoons."""

from __future__ import annotations

import pytest

from trajflow.analysis.measurement import (
    EdieMeasure,
    Insufficiency,
    InsufficientDataError,
    MeasurementEngine,
    summarize,
)
from trajflow.analysis.units import from_speed_kmh
from trajflow.config import MeasurementConfig
from trajflow.recording.models import (
    AnalysisMode,
    Extent,
    LineRegion,
    LoopDetectorRegion,
    PlatoonRegion,
    Point,
    PolygonRegion,
)
from tests.conftest import linear_trajectory, make_trajectory

DEFAULT_WAVE = from_speed_kmh(-17.0)


def make_engine(trajectories, extent=None, config=None) -> MeasurementEngine:
    return MeasurementEngine(
        trajectories,
        extent or Extent(temporal=10.0, spatial=1000.0),
        config or MeasurementConfig(),
    )


def rectangle(t0, y0, t1, y1) -> PolygonRegion:
    return PolygonRegion(vertices=(Point(t0, y0), Point(t1, y0),
                                   Point(t1, y1), Point(t0, y1)))


class TestEdieMeasure:
    def test_ratios(self):
        m = EdieMeasure.from_totals(area=2000.0, ttd=200.0, ttt=2.0)
        assert m.flow == pytest.approx(0.1)
        assert m.density == pytest.approx(0.001)
        assert m.speed == pytest.approx(100.0)

    def test_negligible_denominators_give_zero(self):
        m = EdieMeasure.from_totals(area=0.0, ttd=5.0, ttt=0.0)
        assert m.flow == 0.0
        assert m.density == 0.0
        assert m.speed == 0.0


class TestLineMeasurement:
    def test_vertical_line_counts_one_crossing(self):
        """A stationary vehicle crosses a vertical screen line once."""
        stopped = make_trajectory(1, [(float(t), 500.0) for t in range(11)])
        engine = make_engine([stopped])
        region = LineRegion(Point(5.5, 400.0), Point(5.5, 600.0))

        [record] = engine.measure(region, 1, DEFAULT_WAVE)
        assert record.result.mode == AnalysisMode.LINE
        assert record.result.count == 1
        assert record.result.wave_speed is None
        hit = record.visual.intersections[0]
        assert (hit.time, hit.position) == pytest.approx((5.5, 500.0))

    def test_slanted_line_wave_speed(self):
        engine = make_engine([linear_trajectory(1, 100.0),
                              linear_trajectory(2, 100.0, delay=2.0)])
        region = LineRegion(Point(4.0, 700.0), Point(6.0, 100.0))

        [record] = engine.measure(region, 3, DEFAULT_WAVE)
        assert record.result.count == 2
        assert record.result.wave_speed == pytest.approx(-300.0)
        assert record.result.experiment_id == 3
        assert record.result.flow == 0.0

    def test_line_missing_everything(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        [record] = engine.measure(LineRegion(Point(1.0, 900.0), Point(2.0, 950.0)),
                                  1, DEFAULT_WAVE)
        assert record.result.count == 0
        assert record.visual.intersections == ()


class TestPolygonMeasurement:
    def test_empty_polygon(self):
        """No trajectory inside: all Edie quantities are zero."""
        stopped = make_trajectory(1, [(float(t), 500.0) for t in range(11)])
        engine = make_engine([stopped])

        [record] = engine.measure(rectangle(1, 800, 2, 900), 1, DEFAULT_WAVE)
        r = record.result
        assert r.area == pytest.approx(100.0)
        assert r.ttd == 0.0
        assert r.ttt == 0.0
        assert (r.flow, r.density, r.speed) == (0.0, 0.0, 0.0)

    def test_moving_vehicle(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        [record] = engine.measure(rectangle(2, 0, 4, 1000), 1, DEFAULT_WAVE)
        r = record.result
        assert r.mode == AnalysisMode.POLYGON
        assert r.ttt == pytest.approx(2.0)
        assert r.ttd == pytest.approx(200.0)
        assert r.area == pytest.approx(2000.0)
        assert r.flow == pytest.approx(0.1)
        assert r.density == pytest.approx(0.001)
        assert r.speed == pytest.approx(100.0)

    def test_vertex_order_does_not_matter(self):
        engine = make_engine([linear_trajectory(1, 100.0),
                              linear_trajectory(2, 80.0, delay=1.0)])
        region = rectangle(2, 0, 4, 1000)
        reversed_region = PolygonRegion(vertices=tuple(reversed(region.vertices)))

        a = engine.measure(region, 1, DEFAULT_WAVE)[0].result
        b = engine.measure(reversed_region, 2, DEFAULT_WAVE)[0].result
        assert a.area == pytest.approx(b.area)
        assert a.ttd == pytest.approx(b.ttd)
        assert a.ttt == pytest.approx(b.ttt)

    def test_polygon_needs_four_vertices(self):
        with pytest.raises(ValueError):
            PolygonRegion(vertices=(Point(0, 0), Point(1, 0), Point(1, 1)))


class TestLoopDetector:
    def test_window_count(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(3.0, 500.0), window_duration=5.0,
                                    aperture_length=20.0)
        records = engine.measure(region, 4, DEFAULT_WAVE)

        assert len(records) == 2
        assert {r.result.experiment_id for r in records} == {4}
        for r in records:
            assert r.result.mode == AnalysisMode.LOOP_DETECTOR
            assert r.result.area == pytest.approx(100.0)
            assert r.result.wave_speed == pytest.approx(DEFAULT_WAVE)
            assert r.visual.anchor == Point(3.0, 500.0)

    def test_trailing_window_is_shortened(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(3.0, 500.0), window_duration=3.0,
                                    aperture_length=20.0)
        records = engine.measure(region, 1, DEFAULT_WAVE)

        assert len(records) == 4
        areas = [r.result.area for r in records]
        assert areas == pytest.approx([60.0, 60.0, 60.0, 20.0])

    def test_windows_follow_wave_speed(self):
        engine = make_engine([])
        region = LoopDetectorRegion(Point(0.0, 500.0), window_duration=5.0,
                                    aperture_length=20.0)
        window = engine.loop_windows(region, -100.0)[0]
        # Bottom edge leads the top edge by aperture / |w| minutes
        assert window[0] == Point(0.1, 490.0)
        assert window[3] == Point(-0.1, 510.0)

    def test_zero_wave_speed_gives_rectangles(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(0.0, 500.0), window_duration=5.0,
                                    aperture_length=20.0, wave_speed=0.0)
        window = engine.loop_windows(region, 0.0)[0]
        assert window[0] == Point(0.0, 490.0)
        assert window[3] == Point(0.0, 510.0)

        records = engine.measure(region, 1, DEFAULT_WAVE)
        assert all(r.result.wave_speed == 0.0 for r in records)

    def test_single_vehicle_travel_is_conserved(self):
        """Windows tile the strip, so one pass through it is counted once."""
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(3.0, 500.0), window_duration=1.0,
                                    aperture_length=20.0)
        records = engine.measure(region, 1, DEFAULT_WAVE)

        assert len(records) == 10
        assert sum(r.result.ttd for r in records) == pytest.approx(20.0)
        assert sum(r.result.ttt for r in records) == pytest.approx(0.2)

    def test_region_wave_speed_overrides_reference(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(3.0, 500.0), window_duration=5.0,
                                    aperture_length=20.0, wave_speed=-50.0)
        records = engine.measure(region, 1, DEFAULT_WAVE)
        assert all(r.result.wave_speed == -50.0 for r in records)

    def test_window_count_is_capped(self):
        """Ten one-minute windows exceed a cap of five and are refused."""
        engine = make_engine([linear_trajectory(1, 100.0)],
                             config=MeasurementConfig(loop_max_windows=5))
        region = LoopDetectorRegion(Point(3.0, 500.0), window_duration=1.0,
                                    aperture_length=20.0)
        with pytest.raises(ValueError, match="exceed the limit of 5"):
            engine.measure(region, 1, DEFAULT_WAVE)

    def test_tiny_window_duration_is_refused(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(3.0, 500.0), window_duration=1e-9,
                                    aperture_length=20.0)
        with pytest.raises(ValueError):
            engine.loop_windows(region, DEFAULT_WAVE)


class TestPlatoon:
    @pytest.fixture
    def fleet(self):
        """Three identical vehicles, one minute apart, over 12 minutes."""
        return [linear_trajectory(k + 1, 100.0, delay=float(k), t_end=12.0)
                for k in range(3)]

    @pytest.fixture
    def engine(self, fleet):
        return make_engine(fleet, extent=Extent(temporal=12.0, spatial=1000.0))

    def test_single_trajectory_is_insufficient(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = PlatoonRegion(Point(5.0, 500.0), vehicle_count=5, segment_height=10.0)
        with pytest.raises(InsufficientDataError) as exc:
            engine.measure(region, 1, DEFAULT_WAVE)
        assert exc.value.reason == Insufficiency.TOO_FEW_ACTIVE

    def test_no_trajectories(self):
        engine = make_engine([])
        region = PlatoonRegion(Point(5.0, 500.0), vehicle_count=5, segment_height=10.0)
        with pytest.raises(InsufficientDataError) as exc:
            engine.measure(region, 1, DEFAULT_WAVE)
        assert exc.value.reason == Insufficiency.NO_TRAJECTORIES

    def test_nothing_active_at_anchor_time(self):
        engine = make_engine([make_trajectory(1, [(0, 0), (1, 100)]),
                              make_trajectory(2, [(0, 50), (1, 150)])])
        region = PlatoonRegion(Point(5.0, 100.0), vehicle_count=2, segment_height=10.0)
        with pytest.raises(InsufficientDataError) as exc:
            engine.measure(region, 1, DEFAULT_WAVE)
        assert exc.value.reason == Insufficiency.NO_ACTIVE_TRAJECTORY

    def test_nearest_trajectory_not_active(self):
        ended = make_trajectory(1, [(0, 0), (1, 100), (2, 200), (3, 300)])
        waiting_a = make_trajectory(2, [(float(t), 800.0) for t in range(11)])
        waiting_b = make_trajectory(3, [(float(t), 900.0) for t in range(11)])
        engine = make_engine([ended, waiting_a, waiting_b])

        region = PlatoonRegion(Point(3.2, 310.0), vehicle_count=2, segment_height=10.0)
        with pytest.raises(InsufficientDataError) as exc:
            engine.measure(region, 1, DEFAULT_WAVE)
        assert exc.value.reason == Insufficiency.ANCHOR_NOT_ACTIVE

    def test_selection_is_clamped_to_the_active_set(self, engine):
        """Anchoring on the lead vehicle still yields a full platoon."""
        assert engine.select_platoon(Point(5.0, 500.0), 2) == [1, 0]
        assert engine.select_platoon(Point(5.0, 300.0), 2) == [2, 1]
        assert engine.select_platoon(Point(5.0, 300.0), 10) == [2, 1, 0]

    def test_horizontal_cuts(self, engine):
        region = PlatoonRegion(Point(5.0, 300.0), vehicle_count=3,
                               segment_height=100.0, wave_speed=0.0)
        records = engine.measure(region, 2, DEFAULT_WAVE)

        # Cuts at 300, 400, ... 900; the next would leave the last trajectory
        assert len(records) == 7
        for record in records:
            r = record.result
            assert r.mode == AnalysisMode.PLATOON
            assert r.experiment_id == 2
            assert r.wave_speed == 0.0
            assert r.area == pytest.approx(200.0)
            assert 100.0 - 1e-6 <= r.ttd <= 300.0 + 1e-6
            assert record.visual.anchor == Point(5.0, 300.0)
            assert len(record.visual.points) == 4

        first = records[0].visual.points
        assert (first[0].time, first[0].position) == pytest.approx((5.0, 300.0))
        assert (first[1].time, first[1].position) == pytest.approx((3.0, 300.0))

    def test_step_cap(self, fleet):
        engine = make_engine(fleet, extent=Extent(12.0, 1000.0),
                             config=MeasurementConfig(platoon_max_steps=3))
        region = PlatoonRegion(Point(5.0, 300.0), vehicle_count=3,
                               segment_height=100.0, wave_speed=0.0)
        assert len(engine.measure(region, 1, DEFAULT_WAVE)) == 3

    def test_default_wave_speed_hits_step_cap(self, engine):
        region = PlatoonRegion(Point(5.0, 300.0), vehicle_count=3, segment_height=10.0)
        records = engine.measure(region, 1, DEFAULT_WAVE)
        assert len(records) == 100
        assert all(r.result.wave_speed == pytest.approx(DEFAULT_WAVE) for r in records)
        assert all(r.result.area > 0 for r in records)

    def test_cut_leaving_spatial_extent_stops(self, fleet):
        engine = make_engine(fleet, extent=Extent(12.0, 650.0))
        region = PlatoonRegion(Point(5.0, 300.0), vehicle_count=3,
                               segment_height=100.0, wave_speed=0.0)
        # 300-400, 400-500, 500-600; the 600-700 segment crosses 650 m
        assert len(engine.measure(region, 1, DEFAULT_WAVE)) == 3


class TestSummaries:
    def test_line_summary(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LineRegion(Point(4.0, 700.0), Point(6.0, 100.0))
        text = summarize(region, engine.measure(region, 1, DEFAULT_WAVE))
        assert text.startswith("Line analysis: 1 trajectories crossed")

    def test_loop_summary(self):
        engine = make_engine([linear_trajectory(1, 100.0)])
        region = LoopDetectorRegion(Point(3.0, 500.0), 5.0, 20.0)
        text = summarize(region, engine.measure(region, 1, DEFAULT_WAVE))
        assert text == "Simulated 2 loop detector windows at y=500.0 m."

    def test_vertical_line_summary(self):
        stopped = make_trajectory(1, [(float(t), 500.0) for t in range(11)])
        engine = make_engine([stopped])
        region = LineRegion(Point(5.5, 400.0), Point(5.5, 600.0))
        text = summarize(region, engine.measure(region, 1, DEFAULT_WAVE))
        assert text == ("Line analysis: 1 trajectories crossed, "
                        "wave speed undefined for a vertical line.")
