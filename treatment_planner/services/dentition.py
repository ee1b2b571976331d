# treatment_planner/services/dentition.py
from __future__ import annotations

import re
from typing import Iterable, List

# FDI two-digit notation: quadrant 1-4, position 1-8
FDI_PATTERN = re.compile(r"^[1-4][1-8]$")

# Arch order as seen facing the patient; the midline joins 11-21 and 41-31.
UPPER_ARCH = [f"1{i}" for i in range(8, 0, -1)] + [f"2{i}" for i in range(1, 9)]
LOWER_ARCH = [f"4{i}" for i in range(8, 0, -1)] + [f"3{i}" for i in range(1, 9)]
ALL_TEETH = frozenset(UPPER_ARCH + LOWER_ARCH)

# Visible range: 15-25 upper, 35-45 lower
SMILE_LINE = frozenset(UPPER_ARCH[3:13] + LOWER_ARCH[3:13])

_QUADRANT_NAMES = {"1": "Upper Right", "2": "Upper Left", "3": "Lower Left", "4": "Lower Right"}
_POSITION_NAMES = {
    "1": "Central Incisor",
    "2": "Lateral Incisor",
    "3": "Canine",
    "4": "First Premolar",
    "5": "Second Premolar",
    "6": "First Molar",
    "7": "Second Molar",
    "8": "Third Molar",
}


def is_valid_fdi(value: object) -> bool:
    return isinstance(value, str) and bool(FDI_PATTERN.match(value))


def jaw_of(tooth: str) -> str:
    return "upper" if tooth[0] in ("1", "2") else "lower"


def arch_of(tooth: str) -> List[str]:
    return UPPER_ARCH if jaw_of(tooth) == "upper" else LOWER_ARCH


def tooth_name(tooth: str) -> str:
    return f"{_QUADRANT_NAMES[tooth[0]]} {_POSITION_NAMES[tooth[1]]}"


def in_smile_line(teeth: Iterable[str]) -> bool:
    return any(t in SMILE_LINE for t in teeth)


def arch_sorted(teeth: Iterable[str]) -> List[str]:
    order = {t: i for i, t in enumerate(UPPER_ARCH + LOWER_ARCH)}
    return sorted(set(teeth), key=order.__getitem__)


def is_contiguous(teeth: List[str]) -> bool:
    """True when the positions are distinct neighbours along one arch, in any listing order."""
    if not teeth or len(set(teeth)) != len(teeth):
        return False
    arch = arch_of(teeth[0])
    try:
        idx = sorted(arch.index(t) for t in teeth)
    except ValueError:
        return False
    return all(b - a == 1 for a, b in zip(idx, idx[1:]))


def contiguous_runs(teeth: Iterable[str]) -> List[List[str]]:
    """Group positions into maximal runs of arch neighbours."""
    wanted = set(teeth)
    runs: List[List[str]] = []
    for arch in (UPPER_ARCH, LOWER_ARCH):
        current: List[str] = []
        for t in arch:
            if t in wanted:
                current.append(t)
            elif current:
                runs.append(current)
                current = []
        if current:
            runs.append(current)
    return runs
