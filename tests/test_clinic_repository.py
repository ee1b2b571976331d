import json

import pandas as pd
import pytest

from treatment_planner.services.clinic_repository import ClinicFilter, ClinicRepository, haversine_km

HAPPY_SMILE = (41.0082, 28.9784)


def test_haversine_same_point_is_zero():
    assert haversine_km(41.0082, 28.9784, 41.0082, 28.9784) == 0.0


def test_haversine_antipodal():
    assert haversine_km(0.0, 0.0, 0.0, 180.0) == pytest.approx(20015, abs=1)
    assert haversine_km(90.0, 0.0, -90.0, 0.0) == pytest.approx(20015, abs=1)


def test_haversine_known_distance():
    # Istanbul -> Ankara
    assert haversine_km(41.0082, 28.9784, 39.9334, 32.8597) == pytest.approx(350, abs=5)


def test_find_active_clinics_excludes_inactive(clinic_engine):
    clinics = ClinicRepository(clinic_engine).find_active_clinics()
    assert len(clinics) == 5
    assert "closed-clinic" not in {c.id for c in clinics}
    happy = next(c for c in clinics if c.name == "Happy Smile Clinics")
    assert happy.is_verified
    assert happy.rating == pytest.approx(4.8)
    assert happy.review_count == 156
    assert "Dental Implants" in happy.specialties
    assert happy.distance_km is None


@pytest.mark.parametrize("radius,expected", [(1, 1), (5, 4), (25, 5)])
def test_radius_filter(clinic_engine, radius, expected):
    flt = ClinicFilter(latitude=HAPPY_SMILE[0], longitude=HAPPY_SMILE[1], radius_km=radius)
    clinics = ClinicRepository(clinic_engine).find_active_clinics(flt)
    assert len(clinics) == expected
    assert all(c.distance_km <= radius for c in clinics)


def test_location_without_radius_sets_distance(clinic_engine):
    flt = ClinicFilter(latitude=HAPPY_SMILE[0], longitude=HAPPY_SMILE[1])
    clinics = ClinicRepository(clinic_engine).find_active_clinics(flt)
    assert len(clinics) == 5
    assert all(c.distance_km is not None for c in clinics)


def test_vocabulary_is_union_over_active_clinics(clinic_engine):
    vocab = ClinicRepository(clinic_engine).find_all_service_vocabulary()
    assert {"Dental Implants", "Veneers", "Fillings", "Crowns and Bridges", "General Dentistry"} <= vocab
    assert "Orthodontic Aligners" not in vocab


def test_malformed_rows_are_skipped(clinic_engine):
    bad = pd.DataFrame([
        {"id": "bad-rating", "name": "Bad Rating", "status": "ACTIVE", "services": json.dumps(["Fillings"]),
         "specialties": "[]", "rating": 7.5},
        {"id": "bad-json", "name": "Bad Json", "status": "active", "services": "[Fillings",
         "specialties": "[]", "rating": 4.0},
        {"id": "csv-services", "name": "Csv Services", "status": "Active", "services": "Fillings, Veneers",
         "specialties": None, "rating": 3.0},
    ])
    bad.to_sql("clinics", clinic_engine, index=False, if_exists="append")

    clinics = {c.id: c for c in ClinicRepository(clinic_engine).find_active_clinics()}
    assert "bad-rating" not in clinics
    assert "bad-json" not in clinics
    assert clinics["csv-services"].services == {"Fillings", "Veneers"}
    assert clinics["csv-services"].latitude is None
