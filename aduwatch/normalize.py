import re
from datetime import date

from .models import CONTRACTOR_CHANGE, CONTRACTOR_TO_OWNER, OWNER_TO_CONTRACTOR

# LADBS permit numbers: NNNNN-NNNNN-NNNNN (or the same 15 digits without dashes)
PERMIT_SEGMENT_WIDTHS = (5, 5, 5)

# Position of the amendment sequence digit in the dashed form ("21010-1000X-01234").
# The compact (dash-stripped) form carries the same digit at position 9.
AMENDMENT_DIGIT_OFFSET = 10

# ---- inspection results ----

RESULT_RANK = {
    "PASS": 5,
    "PARTIAL": 4,
    "CORRECTION": 3,
    "FAIL": 2,
    "CANCELLED": 1,
}

APPROVED_RESULTS = frozenset([
    "APPROVED",
    "CONDITIONAL APPROVAL",
    "PARTIAL APPROVAL",
    "COMPLETED",
    "SGSOV APPROVED",
    "PERMIT FINALED",
    "COFO ISSUED",
    "OK TO ISSUE COFO",
    "OK FOR COFO",
    "COFO CORRECTED",
    "APPROVED PENDING GREENAPPROVAL",
])

FAILED_RESULTS = frozenset([
    "CORRECTIONS ISSUED",
    "NOT READY FOR INSPECTION",
])

# first match wins
INSPECTION_TYPE_KEYWORDS = [
    ("FINAL", ["FINAL"]),
    ("FOUNDATION", ["FOUNDATION", "FOOTING", "SLAB"]),
    ("FRAMING", ["FRAMING", "FRAME"]),
    ("DRYWALL", ["DRYWALL", "WALLBOARD", "GYPSUM", "LATH"]),
]

# ---- amendment work descriptions ----

_TO_OWNER_RE = re.compile(r"contractor.*to.*owner", re.IGNORECASE)
_TO_CONTRACTOR_RE = re.compile(r"owner.*to.*contractor", re.IGNORECASE)
_CHANGE_RES = [
    re.compile(r"change.*contractor", re.IGNORECASE),
    re.compile(r"transfer.*contractor", re.IGNORECASE),
    _TO_OWNER_RE,
    _TO_CONTRACTOR_RE,
]

_JADU_RE = re.compile(r"JADU|junior accessory", re.IGNORECASE)
_ADU_RE = re.compile(r"ADU|accessory dwelling", re.IGNORECASE)


def norm(v) -> str:
    return ("" if v is None else str(v)).strip().upper()


def parse_source_date(value: str | None) -> date | None:
    """Socrata floating timestamps look like 2024-01-10T00:00:00.000; keep the day."""
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_float(value) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_int(value) -> int | None:
    f = parse_float(value)
    return int(f) if f is not None else None


# ============================================================
# Permit identifiers
# ============================================================

def _split_segments(raw: str) -> list[str] | None:
    s = raw.strip().replace("–", "-").replace(" ", "-")
    if "-" in s:
        parts = [p for p in s.split("-") if p]
    else:
        total = sum(PERMIT_SEGMENT_WIDTHS)
        if len(s) != total:
            return None
        parts, i = [], 0
        for w in PERMIT_SEGMENT_WIDTHS:
            parts.append(s[i:i + w])
            i += w

    if len(parts) != len(PERMIT_SEGMENT_WIDTHS):
        return None
    if any(len(p) > w or not p.isalnum() for p, w in zip(parts, PERMIT_SEGMENT_WIDTHS)):
        return None
    return parts


def permit_number_variants(raw: str | None, tolerant: bool = False) -> list[str]:
    """
    Candidate spellings of a permit number, most specific first.

    The raw input is always the first entry. Inputs that do not fit the
    fixed-width segment layout come back as [raw].
    """
    if not raw:
        return []

    out = [raw]

    def add(v: str):
        if v and v not in out:
            out.append(v)

    parts = _split_segments(raw)
    if parts is None:
        return out

    padded = [p.zfill(w) for p, w in zip(parts, PERMIT_SEGMENT_WIDTHS)]
    trimmed = [p.lstrip("0") or "0" for p in parts]

    add("".join(padded))
    add("-".join(padded))
    add("-".join(trimmed))

    if tolerant:
        add(" ".join(padded))
        add("–".join(padded))
        add("-".join(padded[1:]))
        add(padded[-1])

    return out


def amendment_permit_numbers(base: str, offset: int = AMENDMENT_DIGIT_OFFSET) -> list[str]:
    if not base or len(base) <= offset:
        return []
    # a stored supplemental permit is not its own amendment
    candidates = (base[:offset] + str(n) + base[offset + 1:] for n in range(1, 10))
    return [c for c in candidates if c != base]


def amendment_digit(permit_nbr: str | None, offset: int = AMENDMENT_DIGIT_OFFSET) -> int | None:
    if not permit_nbr or len(permit_nbr) <= offset:
        return None
    ch = permit_nbr[offset]
    return int(ch) if ch.isdigit() else None


# ============================================================
# Classification
# ============================================================

def classify_contractor_change(work_desc: str | None) -> str | None:
    if not work_desc:
        return None
    if not any(r.search(work_desc) for r in _CHANGE_RES):
        return None
    if _TO_OWNER_RE.search(work_desc):
        return CONTRACTOR_TO_OWNER
    if _TO_CONTRACTOR_RE.search(work_desc):
        return OWNER_TO_CONTRACTOR
    return CONTRACTOR_CHANGE


def classify_adu(work_desc: str | None) -> str | None:
    if not work_desc:
        return None
    if _JADU_RE.search(work_desc):
        return "JADU"
    if _ADU_RE.search(work_desc):
        return "ADU"
    return None


def permit_scope(permit_type: str | None) -> str:
    t = norm(permit_type)
    if "NEW" in t:
        return "NEW"
    if "ADDITION" in t:
        return "ADDITION"
    return "ALTERATION"


def normalize_inspection_type(label: str | None) -> str | None:
    t = norm(label)
    if not t:
        return None
    for canonical, keys in INSPECTION_TYPE_KEYWORDS:
        if any(k in t for k in keys):
            return canonical
    return None


def is_approved(result: str | None) -> bool:
    return result in APPROVED_RESULTS


def result_rank_class(result: str | None) -> str | None:
    r = norm(result)
    if not r:
        return None
    if r in RESULT_RANK:
        return r
    if r == "PARTIAL APPROVAL":
        return "PARTIAL"
    if r in APPROVED_RESULTS:
        return "PASS"
    if "CORRECTION" in r:
        return "CORRECTION"
    if "FAIL" in r or "NOT READY" in r:
        return "FAIL"
    if "CANCEL" in r:
        return "CANCELLED"
    return None


def result_rank(result: str | None) -> int:
    return RESULT_RANK.get(result_rank_class(result), 0)


def is_failure(result: str | None) -> bool:
    return result in FAILED_RESULTS or result_rank_class(result) in ("FAIL", "CORRECTION")
