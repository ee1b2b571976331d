"""
Build SQLite clinic store for FastAPI
-------------------------------------
Input:  treatment_planner/data/clinics_seed.json
Output: treatment_planner/data/clinics.sqlite  (table: clinics)
"""

import json
import sqlite3
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "treatment_planner" / "data"
SEED_PATH = DATA_DIR / "clinics_seed.json"
OUT_DB = DATA_DIR / "clinics.sqlite"

COLUMNS = [
    "id", "name", "city", "country", "latitude", "longitude", "status",
    "services", "specialties", "rating", "review_count", "is_verified", "pricing_tier",
]


def load_seed(path: Path = SEED_PATH) -> pd.DataFrame:
    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)
    df = pd.DataFrame.from_records(records)
    for col in COLUMNS:
        if col not in df.columns:
            df[col] = None
    df = df[COLUMNS]

    # services/specialties live as JSON text in SQLite
    for col in ("services", "specialties"):
        df[col] = df[col].map(lambda v: json.dumps(list(v or [])))
    df["status"] = df["status"].fillna("ACTIVE").astype(str).str.upper()
    df["rating"] = pd.to_numeric(df["rating"], errors="coerce").fillna(0.0).clip(0, 5)
    df["review_count"] = pd.to_numeric(df["review_count"], errors="coerce").fillna(0).astype(int)
    df["is_verified"] = df["is_verified"].fillna(False).astype(bool).astype(int)
    return df


def build_sqlite(seed: Path = SEED_PATH, out_db: Path = OUT_DB) -> int:
    if not seed.exists():
        raise FileNotFoundError(f"Clinic seed not found: {seed}")

    df = load_seed(seed)
    print(f"Loaded {len(df)} clinics")

    out_db.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(out_db) as conn:
        df.to_sql("clinics", conn, index=False, if_exists="replace")
        conn.commit()

    print(f"✅ SQLite clinic store created at {out_db}")
    return len(df)


if __name__ == "__main__":
    build_sqlite()
