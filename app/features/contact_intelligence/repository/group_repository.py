"""
Persistence for contact groups.

Saving generated groups never overwrites: names are unique per user
(case-insensitive, trimmed) and a group whose name or id already exists is
counted as a duplicate and skipped.
"""

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all
from app.db.pool import get_db_transaction
from app.features.contact_intelligence.domain.models import Group, GroupSaveResult
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GROUP_COLUMNS = "id, name, type, description, contact_ids, metadata, created_at, updated_at"


class GroupRepositoryError(DatabaseError):
    """Raised when groups cannot be read or saved."""


class GroupRepository:
    @classmethod
    async def save_generated_groups(cls, user_id: str, groups: list[Group]) -> GroupSaveResult:
        if not groups:
            return GroupSaveResult(saved_count=0, duplicates_skipped=0, saved_groups=[])

        insert = f"""
            INSERT INTO contact_groups ({GROUP_COLUMNS}, user_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
        """

        try:
            async with await get_db_transaction() as conn:
                existing = await fetch_all(
                    "SELECT id, lower(btrim(name)) AS normalized_name "
                    "FROM contact_groups WHERE user_id = %s",
                    (user_id,),
                    connection=conn,
                )
                taken_names = {row["normalized_name"] for row in existing}
                taken_ids = {row["id"] for row in existing}

                saved: list[Group] = []
                skipped = 0
                for group in groups:
                    if group.normalized_name in taken_names or group.id in taken_ids:
                        skipped += 1
                        continue

                    inserted = await execute_query(
                        insert,
                        (
                            group.id,
                            group.name.strip(),
                            group.type,
                            group.description,
                            list(group.contact_ids),
                            Jsonb(group.metadata),
                            group.created_at,
                            group.updated_at,
                            user_id,
                        ),
                        connection=conn,
                    )
                    if inserted:
                        saved.append(group)
                        taken_names.add(group.normalized_name)
                        taken_ids.add(group.id)
                    else:
                        skipped += 1

        except DatabaseError:
            raise
        except Exception as e:
            logger.error("Failed to save generated groups", user_id=user_id, error=str(e))
            raise GroupRepositoryError(
                f"Failed to save groups: {e}", operation="save_generated_groups"
            ) from e

        logger.info(
            "Generated groups saved",
            user_id=user_id,
            saved_count=len(saved),
            duplicates_skipped=skipped,
        )
        return GroupSaveResult(saved_count=len(saved), duplicates_skipped=skipped, saved_groups=saved)
