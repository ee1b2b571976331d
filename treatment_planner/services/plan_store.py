# treatment_planner/services/plan_store.py
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Optional

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..deps import get_engine
from ..schemas import DentalFinding, StoredPlan, TreatmentPlan
from .dentition import arch_sorted

CREATE_TABLE = text("""
CREATE TABLE IF NOT EXISTS treatment_plans (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    source TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT NOT NULL,
    selected_teeth TEXT NOT NULL,
    plan_json TEXT NOT NULL,
    created_at TEXT NOT NULL
)
""")

INSERT_ONE = text("""
INSERT INTO treatment_plans (id, user_id, source, title, summary, selected_teeth, plan_json, created_at)
VALUES (:id, :user_id, :source, :title, :summary, :selected_teeth, :plan_json, :created_at)
""")

SELECT_ONE = text("""
SELECT id, user_id, source, title, summary, selected_teeth, plan_json, created_at
FROM treatment_plans
WHERE id = :pid
LIMIT 1
""")


def _title(source: str) -> str:
    return "Treatment Plan from X-ray Analysis" if source == "xray" else "Treatment Plan from Manual Selection"


def _summary(plan: TreatmentPlan) -> str:
    q = plan.quick_overview
    return (f"{q.total_implants} implants, {q.total_crowns} crowns, {q.total_veneers} veneers; "
            f"{q.complexity_level} complexity, {q.estimated_duration or 'duration to be confirmed'}")


class PlanStore:
    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine
        self._ready = False

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def _ensure_table(self) -> None:
        if self._ready:
            return
        with self.engine.begin() as conn:
            conn.execute(CREATE_TABLE)
        self._ready = True

    def save(self, plan: TreatmentPlan, user_id: Optional[str], source: str,
             finding: Optional[DentalFinding] = None) -> str:
        self._ensure_table()
        plan_id = uuid.uuid4().hex
        teeth = arch_sorted(finding.missing_teeth) if finding else []
        row = {
            "id": plan_id,
            "user_id": user_id,
            "source": source,
            "title": _title(source),
            "summary": _summary(plan),
            "selected_teeth": json.dumps(teeth),
            "plan_json": plan.model_dump_json(by_alias=True),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self.engine.begin() as conn:
            conn.execute(INSERT_ONE, row)
        return plan_id

    def get(self, plan_id: str) -> StoredPlan | None:
        self._ensure_table()
        df = pd.read_sql(SELECT_ONE, self.engine, params={"pid": plan_id})
        if df.empty:
            return None
        row = df.iloc[0].to_dict()
        return StoredPlan(
            id=str(row["id"]),
            user_id=row.get("user_id") or None,
            source=str(row["source"]),
            title=str(row["title"]),
            summary=str(row["summary"]),
            selected_teeth=json.loads(row.get("selected_teeth") or "[]"),
            created_at=str(row["created_at"]),
            plan=TreatmentPlan.model_validate_json(row["plan_json"]),
        )
