"""Pairwise distance matrix over the driver origin, pickups and deliveries.

Index layout for ``n`` orders still to be picked up and ``m`` orders already on board::

    0                driver origin
    1..n             pickups, in order-list order
    n+1..2n          deliveries, in order-list order
    2n+1..2n+m       deliveries of on-board orders, in the given order
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ...models.domain import Coordinate, Order
from ..geospatial import EARTH_RADIUS_KM

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DistanceMatrix:
    points: list[Coordinate]
    values: np.ndarray
    order_count: int
    onboard_count: int = 0

    def __len__(self) -> int:
        return len(self.points)

    def __getitem__(self, index):
        return self.values[index]

    @staticmethod
    def pickup_index(order_index: int) -> int:
        return order_index + 1

    def delivery_index(self, order_index: int) -> int:
        return self.order_count + 1 + order_index

    def onboard_index(self, onboard_position: int) -> int:
        return 2 * self.order_count + 1 + onboard_position

    @property
    def expected_size(self) -> int:
        return 2 * self.order_count + self.onboard_count + 1

    def between(self, i: int, j: int) -> float:
        return float(self.values[i, j])


def _haversine_matrix(points: Sequence[Coordinate]) -> np.ndarray:
    coords = np.radians(np.array([[p.latitude, p.longitude] for p in points], dtype=float))
    lat = coords[:, 0][:, np.newaxis]
    lon = coords[:, 1][:, np.newaxis]

    d_phi = lat.T - lat
    d_lambda = lon.T - lon
    a = np.sin(d_phi / 2) ** 2 + np.cos(lat) * np.cos(lat.T) * np.sin(d_lambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def build_distance_matrix(
    orders: Sequence[Order],
    driver_location: Coordinate,
    onboard_orders: Sequence[Order] = (),
) -> DistanceMatrix:
    """Build the (2n+m+1) x (2n+m+1) great-circle distance matrix in kilometres."""

    points: list[Coordinate] = [driver_location]
    points.extend(order.effective_pickup_location for order in orders)
    points.extend(order.delivery_location for order in orders)
    points.extend(order.delivery_location for order in onboard_orders)

    fallback_pickups = sum(1 for order in orders if order.pickup_location is None)
    if fallback_pickups:
        logger.debug(
            "%d of %d orders have no vendor coordinate; using the delivery coordinate for pickup",
            fallback_pickups,
            len(orders),
        )

    full = _haversine_matrix(points)
    # mirror the upper triangle so the matrix is exactly symmetric with a zero diagonal
    upper = np.triu(full, k=1)
    values = upper + upper.T

    logger.debug("Distance matrix calculated for %d points", len(points))
    return DistanceMatrix(points=points, values=values, order_count=len(orders), onboard_count=len(onboard_orders))
