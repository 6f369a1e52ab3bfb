"""
Interval Learner

Learns how often each service is performed on a vehicle from its delivered
orders and predicts when (date) and where (odometer) it will be due next.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..models import Order, OrderItem, ServiceInterval, VehicleKmHistory

logger = logging.getLogger(__name__)

CONFIDENCE_PER_OCCURRENCE = 25
MAX_CONFIDENCE = 100
SECONDS_PER_DAY = 86400


@dataclass
class Occurrence:
    delivered_at: datetime
    km: Optional[int]


@dataclass
class IntervalEstimate:
    last_done_at: datetime
    last_done_km: Optional[int]
    avg_km_interval: Optional[int] = None
    avg_day_interval: Optional[int] = None
    predicted_next_date: Optional[date] = None
    predicted_next_km: Optional[int] = None
    confidence: int = 0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _mean(values: list[int]) -> Optional[int]:
    if not values:
        return None
    return round_half_up(sum(values) / len(values))


def estimate_interval(occurrences: list[Occurrence]) -> Optional[IntervalEstimate]:
    """
    Estimate the interval of one service from its chronological occurrences.

    Returns None for an empty list. A single occurrence yields a zero-confidence
    estimate with no averages or predictions. Non-positive deltas between
    consecutive occurrences are ignored; km deltas need both readings.
    """
    if not occurrences:
        return None

    last = occurrences[-1]
    estimate = IntervalEstimate(last_done_at=last.delivered_at, last_done_km=last.km)
    if len(occurrences) < 2:
        return estimate

    km_deltas = []
    day_deltas = []
    for prev, curr in zip(occurrences, occurrences[1:]):
        if curr.km and prev.km:
            km_diff = curr.km - prev.km
            if km_diff > 0:
                km_deltas.append(km_diff)

        days = round_half_up((curr.delivered_at - prev.delivered_at).total_seconds() / SECONDS_PER_DAY)
        if days > 0:
            day_deltas.append(days)

    estimate.avg_km_interval = _mean(km_deltas)
    estimate.avg_day_interval = _mean(day_deltas)
    estimate.confidence = min(len(occurrences) * CONFIDENCE_PER_OCCURRENCE, MAX_CONFIDENCE)

    if estimate.avg_day_interval:
        estimate.predicted_next_date = (
            last.delivered_at + timedelta(days=estimate.avg_day_interval)
        ).date()
    if estimate.avg_km_interval and last.km:
        estimate.predicted_next_km = last.km + estimate.avg_km_interval

    return estimate


def km_at(db: Session, vehicle_id: int, moment: datetime) -> Optional[int]:
    """Latest odometer reading recorded at or before moment"""
    entry = (
        db.query(VehicleKmHistory)
        .filter(
            VehicleKmHistory.vehicle_id == vehicle_id,
            VehicleKmHistory.recorded_at <= moment,
        )
        .order_by(VehicleKmHistory.recorded_at.desc(), VehicleKmHistory.id.desc())
        .first()
    )
    return entry.km if entry else None


def collect_occurrences(db: Session, vehicle_id: int, description: str) -> list[Occurrence]:
    rows = (
        db.query(Order.delivered_at)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(
            Order.vehicle_id == vehicle_id,
            Order.status == "delivered",
            Order.delivered_at.isnot(None),
            OrderItem.description == description,
        )
        .order_by(Order.delivered_at.asc(), Order.id.asc())
        .all()
    )
    return [Occurrence(delivered_at=row.delivered_at, km=km_at(db, vehicle_id, row.delivered_at)) for row in rows]


def _upsert(db: Session, vehicle_id: int, description: str, estimate: IntervalEstimate) -> ServiceInterval:
    interval = (
        db.query(ServiceInterval)
        .filter(
            ServiceInterval.vehicle_id == vehicle_id,
            ServiceInterval.service_description == description,
        )
        .first()
    )
    if not interval:
        interval = ServiceInterval(vehicle_id=vehicle_id, service_description=description)
        db.add(interval)

    interval.last_done_at = estimate.last_done_at
    interval.last_done_km = estimate.last_done_km
    interval.avg_km_interval = estimate.avg_km_interval
    interval.avg_day_interval = estimate.avg_day_interval
    interval.predicted_next_date = estimate.predicted_next_date
    interval.predicted_next_km = estimate.predicted_next_km
    interval.confidence = estimate.confidence
    interval.updated_at = datetime.utcnow()
    return interval


def recalculate_intervals(db: Session, vehicle_id: int) -> int:
    """
    Rebuild the service interval predictions of a vehicle.

    Returns the number of services updated. Errors are logged and rolled back,
    never raised, so callers (order delivery) are not affected.
    """
    try:
        descriptions = [
            row.description
            for row in db.query(OrderItem.description)
            .join(Order, OrderItem.order_id == Order.id)
            .filter(Order.vehicle_id == vehicle_id, Order.status == "delivered")
            .distinct()
            .all()
        ]

        updated = 0
        for description in descriptions:
            estimate = estimate_interval(collect_occurrences(db, vehicle_id, description))
            if estimate is None:
                continue
            _upsert(db, vehicle_id, description, estimate)
            updated += 1

        db.commit()
        logger.info(f"🔮 Recalculated {updated} service intervals for vehicle {vehicle_id}")
        return updated
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Interval learner failed for vehicle {vehicle_id}: {e}")
        return 0
