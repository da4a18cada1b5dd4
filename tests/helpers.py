import sqlite3
from datetime import datetime, timedelta, timezone
from itertools import count

from db_models import Contact

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def ticking_clock(start=EPOCH, step=timedelta(seconds=1)):
    """Clock that moves forward by ``step`` on every read."""
    ticks = count()
    return lambda: start + step * next(ticks)


def scripted_clock(*seconds):
    """Clock returning EPOCH + each given offset, in order."""
    moments = iter(seconds)
    return lambda: EPOCH + timedelta(seconds=next(moments))


def read_contacts(database_path):
    conn = sqlite3.connect(database_path)
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(
            "SELECT id, email, phoneNumber, linkedId, linkPrecedence, createdAt FROM Contact ORDER BY id"
        ).fetchall()
    finally:
        conn.close()
    return [Contact.model_validate(dict(row)) for row in rows]


def assert_graph_consistent(contacts):
    by_id = {c.id: c for c in contacts}
    for contact in contacts:
        if contact.is_primary:
            assert contact.linkedId is None
        else:
            assert contact.linkedId in by_id
            assert by_id[contact.linkedId].is_primary, f"contact {contact.id} links to a secondary"
        assert contact.email is not None or contact.phoneNumber is not None
