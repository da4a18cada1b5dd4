"""
Identity Store

Query and mutation primitives over the Contact table. Every method runs on
the connection of the caller's open transaction; committing is the caller's
job. Business rules live in ``reconciliation``.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from db_models import Cluster, Contact, LinkPrecedence
from exceptions import InternalConsistencyViolation

Clock = Callable[[], datetime]

COLUMNS = "id, email, phoneNumber, linkedId, linkPrecedence, createdAt"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    # fixed-width ISO text so that ORDER BY createdAt is chronological
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class ContactStore:
    def __init__(self, conn: sqlite3.Connection, clock: Optional[Clock] = None):
        self.conn = conn
        self.clock = clock or utc_now

    def _now(self) -> str:
        return format_timestamp(self.clock())

    def _fetch(self, query: str, params: Sequence = ()) -> List[Contact]:
        rows = self.conn.execute(query, params).fetchall()
        return [Contact.model_validate(dict(row)) for row in rows]

    def get_contact(self, contact_id: int) -> Optional[Contact]:
        found = self._fetch(f"SELECT {COLUMNS} FROM Contact WHERE id = ?", (contact_id,))
        return found[0] if found else None

    def get_contacts(self, contact_ids: Sequence[int]) -> List[Contact]:
        if not contact_ids:
            return []
        placeholders = ", ".join("?" for _ in contact_ids)
        return self._fetch(
            f"""
            SELECT {COLUMNS} FROM Contact
            WHERE id IN ({placeholders})
            ORDER BY createdAt ASC, id ASC
            """,
            tuple(contact_ids),
        )

    def find_matching(self, email: Optional[str] = None, phone_number: Optional[str] = None) -> List[Contact]:
        """Rows sharing the email or the phone number, oldest first."""
        if email is None and phone_number is None:
            return []
        return self._fetch(
            f"""
            SELECT {COLUMNS} FROM Contact
            WHERE email = ? OR phoneNumber = ?
            ORDER BY createdAt ASC, id ASC
            """,
            (email, phone_number),
        )

    def _insert(self, email, phone_number, linked_id, precedence: LinkPrecedence) -> int:
        now = self._now()
        cursor = self.conn.execute(
            """
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (phone_number, email, linked_id, precedence.value, now, now),
        )
        return cursor.lastrowid

    def insert_primary(self, email: Optional[str] = None, phone_number: Optional[str] = None) -> int:
        return self._insert(email, phone_number, None, LinkPrecedence.PRIMARY)

    def insert_secondary(self, email: Optional[str], phone_number: Optional[str], linked_id: int) -> int:
        return self._insert(email, phone_number, linked_id, LinkPrecedence.SECONDARY)

    def demote_to_secondary(self, contact_id: int, linked_id: int) -> int:
        """Turn a primary into a secondary of ``linked_id``.

        The demoted contact's own secondaries move to ``linked_id`` too, so
        every cluster stays one level deep. Returns how many were moved.
        """
        target = self.get_contact(contact_id)
        if target is None or not target.is_primary:
            raise InternalConsistencyViolation(
                "Only a primary contact can be demoted",
                {
                    "contact_id": contact_id,
                    "linked_id": linked_id,
                    "link_precedence": target.linkPrecedence.value if target else None,
                },
            )

        survivor = self.get_contact(linked_id)
        if contact_id == linked_id or survivor is None or not survivor.is_primary:
            raise InternalConsistencyViolation(
                "A contact can only be linked to another primary contact",
                {"contact_id": contact_id, "linked_id": linked_id},
            )

        now = self._now()
        self.conn.execute(
            """
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = 'secondary', updatedAt = ?
            WHERE id = ?
            """,
            (linked_id, now, contact_id),
        )
        cursor = self.conn.execute(
            "UPDATE Contact SET linkedId = ?, updatedAt = ? WHERE linkedId = ?",
            (linked_id, now, contact_id),
        )
        return cursor.rowcount

    def cluster_of(self, primary_id: int) -> Cluster:
        primary = self.get_contact(primary_id)
        if primary is None or not primary.is_primary:
            raise InternalConsistencyViolation(
                "Cluster requested for a contact that is not primary",
                {
                    "primary_id": primary_id,
                    "found": primary.model_dump(mode="json") if primary else None,
                },
            )

        secondaries = self._fetch(
            f"""
            SELECT {COLUMNS} FROM Contact
            WHERE linkedId = ?
            ORDER BY createdAt ASC, id ASC
            """,
            (primary_id,),
        )
        return Cluster(primary=primary, secondaries=secondaries)
