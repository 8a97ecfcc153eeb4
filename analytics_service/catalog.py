"""
Canonical field catalog for the placement-offer collection.

This is plain data: extend ``FIELDS`` to expose another document field to
the planner, the allow-list check and the compiler's date handling.
"""

from datetime import timedelta
from typing import List, Optional

COLLECTION = "postplacementoffers"

# Civil timezone the office works in.  Month / year windows are computed
# with the fixed offset; $dateTrunc receives the zone name.
TIMEZONE = "Asia/Kolkata"
TIMEZONE_OFFSET = timedelta(hours=5, minutes=30)

# Field that means "this student was placed".
PLACEMENT_DATE_FIELD = "offerDate"

TYPE_STRING = "string"
TYPE_DATE = "date"
TYPE_NUMBER = "number"

FIELDS = {
    "studentName": {"type": TYPE_STRING, "synonyms": ["student", "name"]},
    "offerDate": {
        "type": TYPE_DATE,
        "synonyms": ["offer date", "placement date", "placed on", "offer"],
    },
    "joiningDate": {"type": TYPE_DATE, "synonyms": ["joining date", "join date"]},
    "companyName": {"type": TYPE_STRING, "synonyms": ["company", "employer", "org"]},
    "location": {"type": TYPE_STRING, "synonyms": ["city", "location"]},
    "packageLPA": {
        "type": TYPE_NUMBER,
        "synonyms": ["package", "ctc", "salary", "lpa"],
    },
    "totalPostPlacementFee": {
        "type": TYPE_NUMBER,
        "synonyms": ["total pp fee", "post placement fee", "total fee"],
    },
    "remainingFee": {
        "type": TYPE_NUMBER,
        "synonyms": ["remaining", "due", "outstanding"],
    },
    "remainingPrePlacementFee": {
        "type": TYPE_NUMBER,
        "synonyms": ["pre placement fee", "remaining pre placement fee"],
    },
    "discount": {"type": TYPE_NUMBER, "synonyms": ["discount", "waiver"]},
    "hr.name": {"type": TYPE_STRING, "synonyms": ["hr", "hr name", "recruiter"]},
    "hr.email": {"type": TYPE_STRING, "synonyms": ["hr email", "recruiter email"]},
    "installments.amount": {
        "type": TYPE_NUMBER,
        "synonyms": ["installment", "installment amount", "paid amount"],
    },
    "installments.date": {
        "type": TYPE_DATE,
        "synonyms": ["installment date", "payment date"],
    },
    "installments.mode": {
        "type": TYPE_STRING,
        "synonyms": ["payment mode", "cash", "upi", "card", "bank transfer", "cheque"],
    },
}


def field_names() -> List[str]:
    return list(FIELDS)


def field_type(name: str) -> Optional[str]:
    spec = FIELDS.get(name)
    return spec["type"] if spec else None


def catalog_lines() -> str:
    """Render the catalog as ``- name (type): synonyms`` lines for prompts."""
    return "\n".join(
        f"- {name} ({spec['type']}): {', '.join(spec.get('synonyms', []))}"
        for name, spec in FIELDS.items()
    )
