"""Tests for the service interval learner."""

from datetime import datetime, timedelta

from mechhub.models import ServiceInterval, VehicleKmHistory
from mechhub.services.interval_learner import (
    Occurrence,
    estimate_interval,
    km_at,
    recalculate_intervals,
    round_half_up,
)

START = datetime(2024, 1, 10, 12, 0)


class TestRoundHalfUp:
    """Tests for round_half_up."""

    def test_half_goes_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4

    def test_below_half_goes_down(self):
        assert round_half_up(2.49) == 2


class TestEstimateInterval:
    """Tests for estimate_interval."""

    def test_empty_returns_none(self):
        assert estimate_interval([]) is None

    def test_single_occurrence_has_no_prediction(self):
        estimate = estimate_interval([Occurrence(START, 10000)])
        assert estimate.last_done_at == START
        assert estimate.last_done_km == 10000
        assert estimate.confidence == 0
        assert estimate.avg_day_interval is None
        assert estimate.avg_km_interval is None
        assert estimate.predicted_next_date is None
        assert estimate.predicted_next_km is None

    def test_two_occurrences(self):
        estimate = estimate_interval(
            [Occurrence(START, 10000), Occurrence(START + timedelta(days=180), 20000)]
        )
        assert estimate.avg_day_interval == 180
        assert estimate.avg_km_interval == 10000
        assert estimate.confidence == 50
        assert estimate.predicted_next_date == (START + timedelta(days=360)).date()
        assert estimate.predicted_next_km == 30000

    def test_averages_round_half_up(self):
        estimate = estimate_interval(
            [
                Occurrence(START, 10000),
                Occurrence(START + timedelta(days=100), 15001),
                Occurrence(START + timedelta(days=201), 20002),
            ]
        )
        # day deltas 100 and 101, km deltas 5001 and 5001
        assert estimate.avg_day_interval == 101
        assert estimate.avg_km_interval == 5001
        assert estimate.confidence == 75

    def test_confidence_caps_at_100(self):
        occurrences = [Occurrence(START + timedelta(days=90 * i), None) for i in range(6)]
        assert estimate_interval(occurrences).confidence == 100

    def test_missing_km_skips_km_prediction(self):
        estimate = estimate_interval([Occurrence(START, None), Occurrence(START + timedelta(days=30), 5000)])
        assert estimate.avg_km_interval is None
        assert estimate.predicted_next_km is None
        assert estimate.avg_day_interval == 30

    def test_non_positive_deltas_are_ignored(self):
        estimate = estimate_interval(
            [
                Occurrence(START, 20000),
                Occurrence(START, 15000),
                Occurrence(START + timedelta(days=60), 25000),
            ]
        )
        assert estimate.avg_day_interval == 60
        assert estimate.avg_km_interval == 10000
        assert estimate.confidence == 75


class TestRecalculateIntervals:
    """Tests for recalculate_intervals against a tenant database."""

    def test_learns_from_delivered_orders(self, db, make_order):
        first = make_order(status="delivered", delivered_at=START)
        make_order(
            status="delivered",
            delivered_at=START + timedelta(days=120),
            client=first.client,
            vehicle=first.vehicle,
        )
        db.add_all(
            [
                VehicleKmHistory(vehicle_id=first.vehicle_id, km=40000, recorded_at=START - timedelta(hours=1)),
                VehicleKmHistory(vehicle_id=first.vehicle_id, km=46000, recorded_at=START + timedelta(days=119)),
            ]
        )
        db.commit()

        assert recalculate_intervals(db, first.vehicle_id) == 1

        interval = db.query(ServiceInterval).filter(ServiceInterval.vehicle_id == first.vehicle_id).one()
        assert interval.service_description == "Cambio de aceite"
        assert interval.avg_day_interval == 120
        assert interval.avg_km_interval == 6000
        assert interval.predicted_next_km == 52000
        assert interval.predicted_next_date == (START + timedelta(days=240)).date()
        assert interval.confidence == 50

    def test_ignores_orders_not_delivered(self, db, make_order):
        order = make_order(status="in_progress")
        assert recalculate_intervals(db, order.vehicle_id) == 0
        assert db.query(ServiceInterval).count() == 0

    def test_km_at_uses_latest_reading_before_moment(self, db, make_order):
        order = make_order()
        db.add_all(
            [
                VehicleKmHistory(vehicle_id=order.vehicle_id, km=1000, recorded_at=START),
                VehicleKmHistory(vehicle_id=order.vehicle_id, km=2000, recorded_at=START + timedelta(days=10)),
            ]
        )
        db.commit()
        assert km_at(db, order.vehicle_id, START + timedelta(days=5)) == 1000
        assert km_at(db, order.vehicle_id, START - timedelta(days=1)) is None
