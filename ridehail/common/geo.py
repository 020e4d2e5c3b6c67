# ridehail/common/geo.py
"""
Геометрические утилиты.
"""

import math

EARTH_RADIUS_KM = 6371.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def estimate_duration_minutes(distance_km: float, average_speed_kmh: float) -> int:
    """Оценка длительности поездки при средней скорости (минимум 1 минута)."""
    if distance_km <= 0:
        return 1
    return max(1, math.ceil(distance_km / average_speed_kmh * 60))


def path_distance(points: list[tuple[float, float]]) -> float:
    """Длина ломаной (в км) по последовательным точкам (lat, lng)."""
    return sum(
        calculate_distance(lat1, lng1, lat2, lng2)
        for (lat1, lng1), (lat2, lng2) in zip(points, points[1:])
    )
