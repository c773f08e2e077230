"""Read-only access to a user's contacts."""

from app.db.helpers import fetch_all, with_db_retry
from app.features.contact_intelligence.domain.models import Contact

CONTACT_COLUMNS = """
    id, name, email, company, job_title, website, notes, message,
    location, details, dynamic_fields, event_info, submitted_at
"""


class ContactRepository:
    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_contacts(cls, user_id: str, limit: int = 1000) -> list[Contact]:
        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE user_id = %s
            ORDER BY COALESCE(submitted_at, created_at)
            LIMIT %s
        """
        rows = await fetch_all(query, (user_id, limit))
        return [Contact.from_dict(row) for row in rows]

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_contacts_by_ids(cls, user_id: str, contact_ids: list[str]) -> dict[str, Contact]:
        """Fetch contacts keyed by id; ids that no longer exist are simply absent."""
        if not contact_ids:
            return {}

        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE user_id = %s AND id = ANY(%s)
        """
        rows = await fetch_all(query, (user_id, list(contact_ids)))
        contacts = (Contact.from_dict(row) for row in rows)
        return {contact.id: contact for contact in contacts}
