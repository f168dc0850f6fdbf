"""Case register access used by the API and the hearing scheduler."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

_UNSET: Any = object()


class CaseValidationError(ValueError):
    """Raised when a case payload is missing required parties."""


class CaseNotFoundError(LookupError):
    """Raised when a case id does not exist."""


@dataclass
class CaseRecord:
    id: int
    plaintiff_name: str
    defendant_name: str
    first_instance_hearing: Optional[str] = None
    appeal_hearing: Optional[str] = None
    third_party: Optional[str] = None
    claim_subject: Optional[str] = None
    first_instance_court: Optional[str] = None
    appeal_court: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CaseRecord":
        return cls(
            id=int(row["id"]),
            plaintiff_name=row["plaintiff_name"],
            defendant_name=row["defendant_name"],
            first_instance_hearing=row["first_instance_hearing"],
            appeal_hearing=row["appeal_hearing"],
            third_party=row["third_party"],
            claim_subject=row["claim_subject"],
            first_instance_court=row["first_instance_court"],
            appeal_court=row["appeal_court"],
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plaintiffName": self.plaintiff_name,
            "defendantName": self.defendant_name,
            "thirdParty": self.third_party,
            "claimSubject": self.claim_subject,
            "firstInstanceCourt": self.first_instance_court,
            "firstInstanceHearing": self.first_instance_hearing,
            "appealCourt": self.appeal_court,
            "appealHearing": self.appeal_hearing,
        }


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def fetch_all_cases(conn: sqlite3.Connection) -> List[CaseRecord]:
    """Full scan of the register in primary-key order."""
    rows = conn.execute("SELECT * FROM cases ORDER BY id").fetchall()
    return [CaseRecord.from_row(row) for row in rows]


def get_case(conn: sqlite3.Connection, case_id: int) -> CaseRecord:
    row = conn.execute("SELECT * FROM cases WHERE id = ?", (case_id,)).fetchone()
    if row is None:
        raise CaseNotFoundError(f"Case #{case_id} does not exist")
    return CaseRecord.from_row(row)


def create_case(
    conn: sqlite3.Connection,
    plaintiff_name: str,
    defendant_name: str,
    *,
    first_instance_hearing: Optional[str] = None,
    appeal_hearing: Optional[str] = None,
    third_party: Optional[str] = None,
    claim_subject: Optional[str] = None,
    first_instance_court: Optional[str] = None,
    appeal_court: Optional[str] = None,
) -> int:
    plaintiff = _clean(plaintiff_name)
    defendant = _clean(defendant_name)
    if not plaintiff or not defendant:
        raise CaseValidationError("Plaintiff and defendant names are required")

    cur = conn.execute(
        """
        INSERT INTO cases(
            plaintiff_name, defendant_name, third_party, claim_subject,
            first_instance_court, first_instance_hearing, appeal_court, appeal_hearing
        )
        VALUES(?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            plaintiff,
            defendant,
            _clean(third_party),
            _clean(claim_subject),
            _clean(first_instance_court),
            _clean(first_instance_hearing),
            _clean(appeal_court),
            _clean(appeal_hearing),
        ),
    )
    conn.commit()
    return int(cur.lastrowid)


def update_hearings(
    conn: sqlite3.Connection,
    case_id: int,
    *,
    first_instance_hearing: Optional[str] = _UNSET,
    appeal_hearing: Optional[str] = _UNSET,
) -> CaseRecord:
    """Change one or both hearing timestamps; omitted arguments are left as they are.

    Passing ``None`` or an empty string clears the hearing.
    """
    assignments: List[str] = []
    params: List[Any] = []
    if first_instance_hearing is not _UNSET:
        assignments.append("first_instance_hearing = ?")
        params.append(_clean(first_instance_hearing))
    if appeal_hearing is not _UNSET:
        assignments.append("appeal_hearing = ?")
        params.append(_clean(appeal_hearing))

    if assignments:
        cur = conn.execute(
            f"UPDATE cases SET {', '.join(assignments)} WHERE id = ?",
            (*params, case_id),
        )
        conn.commit()
        if cur.rowcount == 0:
            raise CaseNotFoundError(f"Case #{case_id} does not exist")
    return get_case(conn, case_id)
