"""
Trash for deleted rows.

Before a document is hard deleted, a JSON snapshot of the row (and its
line items) is written to the corbeille table inside the same transaction.
Entries are append-only; restoring is left to the caller.
"""

from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, TransactionContext
from utils.timezone import now_utc


class Corbeille:
    """
    Append-only archive of deleted entities.

    Usage:
        corbeille = Corbeille(postgres)

        with postgres.transaction() as tx:
            corbeille.archive(
                tx,
                table_source="documents",
                data=detail.model_dump(mode="json"),
                deleted_by="alice",
            )
            tx.execute("DELETE FROM documents WHERE id = %s", (document_id,))
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def archive(
        self,
        tx: TransactionContext,
        table_source: str,
        data: dict[str, Any],
        deleted_by: str | None = None,
    ) -> UUID:
        """
        Store a snapshot of a row about to be deleted.

        Args:
            tx: Transaction performing the deletion
            table_source: Table the row is deleted from
            data: JSON-serializable snapshot (use model_dump(mode="json"))
            deleted_by: Who requested the deletion, if known

        Returns:
            ID of the corbeille entry
        """
        entry_id = uuid4()
        tx.execute(
            """
            INSERT INTO corbeille (id, table_source, data, utilisateur, date_suppression)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (entry_id, table_source, Json(data), deleted_by, now_utc())
        )
        return entry_id

    def list_entries(
        self,
        table_source: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Archived rows, newest first.

        Args:
            table_source: Only entries from this table
            limit: Maximum entries to return
            offset: Entries to skip
        """
        if table_source is None:
            return self.postgres.execute(
                """
                SELECT id, table_source, data, utilisateur, date_suppression
                FROM corbeille
                ORDER BY date_suppression DESC
                LIMIT %s OFFSET %s
                """,
                (limit, offset)
            )

        return self.postgres.execute(
            """
            SELECT id, table_source, data, utilisateur, date_suppression
            FROM corbeille
            WHERE table_source = %s
            ORDER BY date_suppression DESC
            LIMIT %s OFFSET %s
            """,
            (table_source, limit, offset)
        )
