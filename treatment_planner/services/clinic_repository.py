# treatment_planner/services/clinic_repository.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Set

import numpy as np
import pandas as pd
from pydantic import ValidationError as SchemaError
from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..deps import get_engine
from ..schemas import ClinicProfile

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

SELECT_ACTIVE = text(
    """
    SELECT id, name, city, country, latitude, longitude, status,
           services, specialties, rating, review_count, is_verified, pricing_tier
    FROM clinics
    WHERE UPPER(status) = 'ACTIVE'
    """
)

SELECT_VOCABULARY = text(
    """
    SELECT services, specialties
    FROM clinics
    WHERE UPPER(status) = 'ACTIVE'
    """
)


@dataclass(frozen=True)
class ClinicFilter:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km on a sphere of radius 6371."""
    return float(_distance_km(lat1, lng1, np.array([lat2]), np.array([lng2]))[0])


def _distance_km(lat: float, lng: float, lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    lat1, lng1 = np.radians(lat), np.radians(lng)
    lat2, lng2 = np.radians(lats.astype(float)), np.radians(lngs.astype(float))
    # haversine form; identical points give exactly 0
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def _as_labels(value: Any) -> List[str]:
    """services/specialties are JSON arrays in SQLite, native arrays elsewhere."""
    if _missing(value):
        return []
    if isinstance(value, (list, tuple, set, np.ndarray)):
        return [str(v).strip() for v in value if str(v).strip()]
    s = str(value).strip()
    if not s:
        return []
    if s.startswith("["):
        return [str(v).strip() for v in json.loads(s) if str(v).strip()]
    return [p.strip() for p in s.split(",") if p.strip()]


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and np.isnan(value))


def _text(value: Any) -> Optional[str]:
    return None if _missing(value) or str(value).strip() == "" else str(value).strip()


def _number(value: Any) -> Optional[float]:
    return None if _missing(value) else float(value)


def _row_to_profile(row: dict) -> ClinicProfile:
    return ClinicProfile(
        id=str(row["id"]),
        name=_text(row.get("name")) or "",
        city=_text(row.get("city")),
        country=_text(row.get("country")),
        latitude=_number(row.get("latitude")),
        longitude=_number(row.get("longitude")),
        status=(_text(row.get("status")) or "ACTIVE").upper(),
        services=frozenset(_as_labels(row.get("services"))),
        specialties=frozenset(_as_labels(row.get("specialties"))),
        rating=_number(row.get("rating")) or 0.0,
        review_count=int(_number(row.get("review_count")) or 0),
        is_verified=bool(_number(row.get("is_verified")) or 0),
        pricing_tier=_text(row.get("pricing_tier")),
        distance_km=_number(row.get("distance_km")),
    )


class ClinicRepository:
    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def _load_active(self) -> pd.DataFrame:
        return pd.read_sql(SELECT_ACTIVE, self.engine)

    def find_active_clinics(self, flt: Optional[ClinicFilter] = None) -> List[ClinicProfile]:
        """
        Active clinics, optionally restricted to radius_km around a point.

        With a location, each profile carries distance_km; clinics without
        coordinates are dropped when a radius is applied.
        """
        flt = flt or ClinicFilter()
        df = self._load_active()
        if df.empty:
            return []

        df["distance_km"] = np.nan
        if flt.has_location:
            located = df["latitude"].notna() & df["longitude"].notna()
            df.loc[located, "distance_km"] = _distance_km(
                flt.latitude, flt.longitude,
                df.loc[located, "latitude"].to_numpy(), df.loc[located, "longitude"].to_numpy(),
            )
            if flt.radius_km is not None:
                df = df[df["distance_km"] <= float(flt.radius_km)]

        out: List[ClinicProfile] = []
        for rec in df.to_dict(orient="records"):
            try:
                out.append(_row_to_profile(rec))
            except (SchemaError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed clinic row %s: %s", rec.get("id"), e)
        return out

    def find_all_service_vocabulary(self) -> Set[str]:
        df = pd.read_sql(SELECT_VOCABULARY, self.engine)
        vocab: Set[str] = set()
        for rec in df.to_dict(orient="records"):
            try:
                vocab.update(_as_labels(rec.get("services")))
                vocab.update(_as_labels(rec.get("specialties")))
            except ValueError as e:
                logger.warning("Skipping malformed clinic vocabulary row: %s", e)
        return vocab
