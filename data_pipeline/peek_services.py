# data_pipeline/peek_services.py
import json
import sqlite3
from collections import Counter
from pathlib import Path

DB = Path(__file__).resolve().parents[1] / "treatment_planner" / "data" / "clinics.sqlite"

counts = Counter()
with sqlite3.connect(DB) as conn:
    cur = conn.cursor()
    cur.execute("SELECT services, specialties FROM clinics WHERE UPPER(status) = 'ACTIVE';")
    for services, specialties in cur.fetchall():
        counts.update(json.loads(services or "[]"))
        counts.update(json.loads(specialties or "[]"))

for name, c in counts.most_common(30):
    print(name, c)
