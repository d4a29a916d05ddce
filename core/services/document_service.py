"""
Document service: atomic persistence of documents and their line items.

Every write runs in one transaction obtained from PostgresClient.transaction().
The header row and the full item set are written together; any failure rolls
both back. Updates replace the item set (delete then reinsert), so concurrent
editors of the same document are last-writer-wins, not merged.

SQL is built only from the fixed column lists below. Payload keys never
become column names.
"""

import logging
from datetime import date, timedelta
from typing import Any, Sequence
from uuid import UUID, uuid4

import psycopg2
from psycopg2 import errors as pg_errors
from pydantic import BaseModel, ValidationError

from clients.postgres_client import PostgresClient, TransactionContext
from core.config import EngineConfig
from core.corbeille import Corbeille
from core.exceptions import (
    DocumentValidationError,
    NotFoundError,
    NumberingConflictError,
    StatusTransitionError,
    TransactionFailure,
)
from core.models import (
    Document,
    DocumentCreate,
    DocumentDetail,
    DocumentSearch,
    DocumentStatus,
    DocumentSummary,
    DocumentType,
    DocumentUpdate,
    LineItem,
    LineItemCreate,
    can_transition,
)
from core.numbering import (
    NumberGenerator,
    generate_temp_numero,
    numbering_type,
    validate_numero,
)
from core.totals import Totals, calculate_totals
from utils.timezone import now_utc, today_in

logger = logging.getLogger(__name__)

_DOCUMENT_COLUMNS = (
    "id", "numero", "type_document", "categorie_facture",
    "client_id", "entreprise_id", "date_emission", "date_echeance", "statut",
    "taux_tva", "montant_ht", "montant_tva", "montant_ttc",
    "remise_globale", "frais_administratif", "devise",
    "conditions_paiement", "notes", "document_origine_id",
    "created_at", "updated_at",
)

_UPDATABLE_COLUMNS = {
    "client_id", "date_emission", "date_echeance", "taux_tva",
    "montant_ht", "montant_tva", "montant_ttc", "remise_globale",
    "frais_administratif", "devise", "conditions_paiement", "notes",
}

_LINE_ITEM_COLUMNS = (
    "id", "document_id", "description", "quantite", "prix_unitaire",
    "taux_tva", "montant_ht", "montant_tva", "montant_ttc", "ordre",
    "item", "date_transport", "plaque_immat", "ticket", "tonnes",
    "total_poids", "frais_administratif", "unite",
    "created_at", "updated_at",
)

# Date column the range filter and ordering apply to, per document type
_DATE_COLUMNS = {
    DocumentType.FACTURE: "d.date_emission",
    DocumentType.PROFORMA: "d.date_emission",
    DocumentType.DEVIS: "d.date_emission",
    None: "d.date_emission",
}

_NUMERO_CONSTRAINT = "documents_numero_key"

_DETAIL_SELECT = """
    SELECT d.*,
           e.nom AS entreprise_nom, e.adresse AS entreprise_adresse,
           e.telephone AS entreprise_telephone, e.email AS entreprise_email,
           c.nom AS client_nom, c.adresse AS client_adresse,
           c.ville AS client_ville, c.telephone AS client_telephone,
           c.email AS client_email
    FROM documents d
    JOIN entreprises e ON d.entreprise_id = e.id
    LEFT JOIN clients c ON d.client_id = c.id
    WHERE d.id = %s
"""


def _coerce(model_cls: type[BaseModel], data: Any) -> Any:
    """Accept a model instance or a raw payload dict."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise DocumentValidationError(str(e)) from e


def _insert_sql(table: str, columns: Sequence[str]) -> str:
    placeholders = ", ".join(["%s"] * len(columns))
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def _escape_like(value: str) -> str:
    """Make LIKE wildcards in a user string match literally (ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DocumentService:
    """Service for document and line item persistence."""

    def __init__(
        self,
        postgres: PostgresClient,
        config: EngineConfig | None = None,
        numbering: NumberGenerator | None = None,
        corbeille: Corbeille | None = None,
    ):
        self.postgres = postgres
        self.config = config or EngineConfig()
        self.numbering = numbering or NumberGenerator(self.config.default_prefix)
        self.corbeille = corbeille or Corbeille(postgres)

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    def create_document(self, data: DocumentCreate | dict) -> Document:
        """
        Create a document with its line items in one transaction.

        Args:
            data: Document payload. numero is generated when absent.

        Returns:
            Persisted document header (without items)

        Raises:
            DocumentValidationError: Malformed payload or caller-supplied numero
            NotFoundError: Entreprise or client does not exist
            NumberingConflictError: numero already taken (retryable)
            TransactionFailure: Any other database failure (rolled back)
        """
        data = _coerce(DocumentCreate, data)
        numero = data.numero

        try:
            with self.postgres.transaction() as tx:
                document = self._create_in_tx(tx, data)
                numero = document.numero
        except pg_errors.UniqueViolation as e:
            raise self._unique_violation(e, numero) from e
        except psycopg2.Error as e:
            logger.error(f"Document creation rolled back: {e}")
            raise TransactionFailure(f"Document creation failed: {e}") from e

        logger.info(f"Created document {document.id} ({document.numero})")
        return document

    def update_document(self, document_id: UUID, data: DocumentUpdate | dict) -> Document:
        """
        Update header fields and, when items is given, replace the item set.

        Totals are recomputed whenever items, the administrative fee or the
        VAT rate change, so the header always matches its items.

        Args:
            document_id: Document UUID
            data: Fields to update

        Returns:
            Updated document header

        Raises:
            NotFoundError: If the document does not exist
            DocumentValidationError: Malformed payload
            TransactionFailure: Database failure (rolled back)
        """
        data = _coerce(DocumentUpdate, data)

        try:
            with self.postgres.transaction() as tx:
                document = self._update_in_tx(tx, document_id, data)
        except pg_errors.UniqueViolation as e:
            raise self._unique_violation(e, None) from e
        except psycopg2.Error as e:
            logger.error(f"Update of document {document_id} rolled back: {e}")
            raise TransactionFailure(f"Document update failed: {e}") from e

        logger.info(f"Updated document {document_id}")
        return document

    def _create_in_tx(self, tx: TransactionContext, data: DocumentCreate) -> Document:
        self._require_parties(tx, data.entreprise_id, data.client_id)

        numero = self._resolve_numero(tx, data)

        if data.items is not None:
            totals = self._compute_totals(data.items, data.frais_administratif, data.taux_tva)
            amounts = self._totals_columns(totals)
        else:
            amounts = self._header_amounts(
                data.montant_ht, data.montant_tva, data.montant_ttc,
                data.taux_tva, data.frais_administratif,
            )

        now = now_utc()
        values = {
            "id": uuid4(),
            "numero": numero,
            "type_document": data.type_document.value,
            "categorie_facture": data.categorie_facture.value,
            "client_id": data.client_id,
            "entreprise_id": data.entreprise_id,
            "date_emission": data.date_emission,
            "date_echeance": data.date_echeance,
            "statut": data.statut.value,
            "remise_globale": data.remise_globale,
            "devise": data.devise,
            "conditions_paiement": data.conditions_paiement,
            "notes": data.notes,
            "document_origine_id": data.document_origine_id,
            "created_at": now,
            "updated_at": now,
            **amounts,
        }

        row = tx.execute_returning(
            _insert_sql("documents", _DOCUMENT_COLUMNS) + " RETURNING *",
            tuple(values[column] for column in _DOCUMENT_COLUMNS)
        )[0]
        document = Document.model_validate(row)

        if data.items:
            self._insert_items(tx, document.id, data.items)

        return document

    def _update_in_tx(self, tx: TransactionContext, document_id: UUID, data: DocumentUpdate) -> Document:
        current = self._lock_document(tx, document_id)

        updates = data.model_dump(exclude_none=True, exclude={"items"})
        for field in updates:
            if field not in _UPDATABLE_COLUMNS:
                logger.warning(f"Attempted to update unknown field '{field}' on document {document_id}")
        updates = {k: v for k, v in updates.items() if k in _UPDATABLE_COLUMNS}

        if "client_id" in updates:
            self._require_parties(tx, current.entreprise_id, updates["client_id"])

        date_emission = updates.get("date_emission", current.date_emission)
        date_echeance = updates.get("date_echeance", current.date_echeance)
        if date_echeance is not None and date_echeance < date_emission:
            raise DocumentValidationError("date_echeance must not be before date_emission")

        fee = updates.get("frais_administratif", current.frais_administratif)
        rate = updates.get("taux_tva", current.taux_tva)

        if data.items is not None:
            source = data.items
        else:
            source = self._fetch_items(tx, document_id) or None

        if source is not None:
            updates.update(self._totals_columns(self._compute_totals(source, fee, rate)))
        else:
            updates.update(self._header_amounts(
                updates.get("montant_ht", current.montant_ht),
                updates.get("montant_tva", current.montant_tva),
                updates.get("montant_ttc"), rate, fee,
            ))

        set_parts = []
        params = []
        for field, value in updates.items():
            set_parts.append(f"{field} = %s")
            params.append(value)

        set_parts.append("updated_at = %s")
        params.append(now_utc())
        params.append(document_id)

        row = tx.execute_returning(
            f"""
            UPDATE documents
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            tuple(params)
        )[0]

        if data.items is not None:
            tx.execute("DELETE FROM lignes_documents WHERE document_id = %s", (document_id,))
            if data.items:
                self._insert_items(tx, document_id, data.items)

        return Document.model_validate(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, document_id: UUID) -> Document | None:
        """
        Get document header by ID.

        Returns:
            Document if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM documents WHERE id = %s",
            (document_id,)
        )

        if row is None:
            return None

        return Document.model_validate(row)

    def find_by_id_with_items(self, document_id: UUID) -> DocumentDetail:
        """
        Get a document with entreprise/client display fields and its items.

        Items are ordered by ordre ascending.

        Raises:
            NotFoundError: If the document does not exist
        """
        with self.postgres.transaction() as tx:
            detail = self._fetch_detail(tx, document_id)

        if detail is None:
            raise NotFoundError("Document", document_id)
        return detail

    def search_documents(self, criteria: DocumentSearch | dict | None = None) -> list[DocumentSummary]:
        """
        Search documents.

        All filters are optional and combined with AND. numero matches as a literal,
        case-insensitive substring. Results are ordered by document date,
        newest first, and paginated by limit/offset.

        Args:
            criteria: Search filters

        Returns:
            Matching documents with entreprise and client names
        """
        criteria = _coerce(DocumentSearch, criteria or {})
        date_column = _DATE_COLUMNS[criteria.type_document]

        conditions = []
        params: list[Any] = []

        if criteria.entreprise_id is not None:
            conditions.append("d.entreprise_id = %s")
            params.append(criteria.entreprise_id)
        if criteria.client_id is not None:
            conditions.append("d.client_id = %s")
            params.append(criteria.client_id)
        if criteria.statut is not None:
            conditions.append("d.statut = %s")
            params.append(criteria.statut.value)
        if criteria.type_document is not None:
            conditions.append("d.type_document = %s")
            params.append(criteria.type_document.value)
        if criteria.date_debut is not None:
            conditions.append(f"{date_column} >= %s")
            params.append(criteria.date_debut)
        if criteria.date_fin is not None:
            conditions.append(f"{date_column} <= %s")
            params.append(criteria.date_fin)
        if criteria.numero:
            conditions.append("d.numero ILIKE %s ESCAPE '\\'")
            params.append(f"%{_escape_like(criteria.numero)}%")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        limit = criteria.limit if "limit" in criteria.model_fields_set else self.config.search_default_limit
        limit = min(limit, self.config.search_max_limit)
        params.extend([limit, criteria.offset])

        rows = self.postgres.execute(
            f"""
            SELECT d.*,
                   e.nom AS entreprise_nom, e.adresse AS entreprise_adresse,
                   e.telephone AS entreprise_telephone,
                   c.nom AS client_nom
            FROM documents d
            JOIN entreprises e ON d.entreprise_id = e.id
            JOIN clients c ON d.client_id = c.id
            {where}
            ORDER BY {date_column} DESC, d.created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )

        return [DocumentSummary.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Status and derived documents
    # ------------------------------------------------------------------

    def update_statut(self, document_id: UUID, statut: DocumentStatus | str) -> Document:
        """
        Move a document to a new status.

        Allowed moves: brouillon -> emise/annule, emise -> payee/converti/annule.
        Asking for the current status is a no-op.

        Raises:
            DocumentValidationError: Unknown status value
            NotFoundError: If the document does not exist
            StatusTransitionError: If the move is not allowed
            TransactionFailure: Database failure (rolled back)
        """
        try:
            requested = DocumentStatus(statut)
        except ValueError as e:
            raise DocumentValidationError(f"Unknown status: {statut!r}") from e

        try:
            with self.postgres.transaction() as tx:
                current = self._lock_document(tx, document_id)
                if current.statut == requested:
                    return current
                self._set_statut(tx, current, requested)
                row = tx.execute_single("SELECT * FROM documents WHERE id = %s", (document_id,))
        except psycopg2.Error as e:
            logger.error(f"Status change of document {document_id} rolled back: {e}")
            raise TransactionFailure(f"Status change failed: {e}") from e

        logger.info(f"Document {document_id} moved from {current.statut.value} to {requested.value}")
        return Document.model_validate(row)

    def convert_proforma(self, document_id: UUID, date_emission: date | None = None) -> Document:
        """
        Turn a proforma into an invoice.

        The invoice copies the proforma's parties, amounts and items, gets a
        fresh invoice number, status emise and a due date payment_delay_days
        later. The proforma moves to converti. Both happen in one transaction.

        Args:
            document_id: Proforma UUID
            date_emission: Invoice date (today when omitted)

        Returns:
            The new invoice

        Raises:
            NotFoundError: If the proforma does not exist
            DocumentValidationError: If the document is not a proforma
            StatusTransitionError: If the proforma cannot move to converti
        """
        issue_date = date_emission or today_in(self.config.timezone)
        numero = None

        try:
            with self.postgres.transaction() as tx:
                proforma = self._fetch_detail(tx, document_id, lock=True)
                if proforma is None:
                    raise NotFoundError("Document", document_id)
                if proforma.type_document != DocumentType.PROFORMA:
                    raise DocumentValidationError(f"Document {document_id} is not a proforma")

                self._set_statut(tx, proforma, DocumentStatus.CONVERTI)

                invoice = self._create_in_tx(tx, self._copy_payload(
                    proforma,
                    type_document=DocumentType.FACTURE,
                    statut=DocumentStatus.EMISE,
                    date_emission=issue_date,
                    date_echeance=issue_date + timedelta(days=self.config.payment_delay_days),
                ))
                numero = invoice.numero
        except pg_errors.UniqueViolation as e:
            raise self._unique_violation(e, numero) from e
        except psycopg2.Error as e:
            logger.error(f"Conversion of proforma {document_id} rolled back: {e}")
            raise TransactionFailure(f"Proforma conversion failed: {e}") from e

        logger.info(f"Converted proforma {document_id} into invoice {invoice.numero}")
        return invoice

    def duplicate_document(
        self,
        document_id: UUID,
        type_document: DocumentType | None = None,
        client_id: UUID | None = None,
        date_emission: date | None = None,
    ) -> Document:
        """
        Copy a document and its items under a new number, as a draft.

        Args:
            document_id: Document to copy
            type_document: Type of the copy (same as the original when omitted)
            client_id: Bill the copy to another client
            date_emission: Date of the copy (today when omitted)

        Raises:
            NotFoundError: If the document or the new client does not exist
        """
        numero = None

        try:
            with self.postgres.transaction() as tx:
                original = self._fetch_detail(tx, document_id)
                if original is None:
                    raise NotFoundError("Document", document_id)

                copy = self._create_in_tx(tx, self._copy_payload(
                    original,
                    type_document=type_document or original.type_document,
                    statut=DocumentStatus.BROUILLON,
                    date_emission=date_emission or today_in(self.config.timezone),
                    date_echeance=None,
                    client_id=client_id or original.client_id,
                ))
                numero = copy.numero
        except pg_errors.UniqueViolation as e:
            raise self._unique_violation(e, numero) from e
        except psycopg2.Error as e:
            logger.error(f"Duplication of document {document_id} rolled back: {e}")
            raise TransactionFailure(f"Document duplication failed: {e}") from e

        logger.info(f"Duplicated document {document_id} as {copy.numero}")
        return copy

    def delete_document(self, document_id: UUID, deleted_by: str | None = None) -> bool:
        """
        Archive a document and its items to the corbeille, then delete it.

        Line items go with the document through ON DELETE CASCADE.

        Returns:
            True if deleted, False if not found

        Raises:
            TransactionFailure: Database failure (rolled back)
        """
        try:
            with self.postgres.transaction() as tx:
                detail = self._fetch_detail(tx, document_id, lock=True)
                if detail is None:
                    return False

                self.corbeille.archive(
                    tx,
                    table_source="documents",
                    data=detail.model_dump(mode="json"),
                    deleted_by=deleted_by,
                )
                tx.execute("DELETE FROM documents WHERE id = %s", (document_id,))
        except psycopg2.Error as e:
            logger.error(f"Deletion of document {document_id} rolled back: {e}")
            raise TransactionFailure(f"Document deletion failed: {e}") from e

        logger.info(f"Deleted document {document_id} ({detail.numero})")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_numero(self, tx: TransactionContext, data: DocumentCreate) -> str:
        key = numbering_type(data.type_document, data.categorie_facture)

        if data.numero:
            if key is not None and not validate_numero(data.numero, key):
                raise DocumentValidationError(
                    f"Document number {data.numero!r} does not match the {key} format"
                )
            return data.numero

        if key is None:
            return generate_temp_numero(self.config.temp_prefix)

        return self.numbering.generate(
            tx, data.entreprise_id, data.type_document,
            data.categorie_facture, data.date_emission,
        )

    def _compute_totals(self, items, fee, rate) -> Totals:
        return calculate_totals(
            items,
            frais_administratif=fee,
            taux_tva=self.config.default_taux_tva if rate is None else rate,
        )

    @staticmethod
    def _totals_columns(totals: Totals) -> dict[str, Any]:
        return {
            "montant_ht": totals.montant_ht,
            "montant_tva": totals.montant_tva,
            "montant_ttc": totals.montant_ttc,
            "taux_tva": totals.taux_tva,
            "frais_administratif": totals.frais_administratif,
        }

    def _header_amounts(self, ht, tva, ttc, rate, fee) -> dict[str, Any]:
        """Caller-supplied amounts for a document without items. TTC must equal HT + TVA."""
        ht = ht if ht is not None else 0
        tva = tva if tva is not None else 0
        if ttc is not None and ttc != ht + tva:
            raise DocumentValidationError(
                f"montant_ttc {ttc} does not equal montant_ht + montant_tva ({ht + tva})"
            )
        return {
            "montant_ht": ht,
            "montant_tva": tva,
            "montant_ttc": ht + tva,
            "taux_tva": self.config.default_taux_tva if rate is None else rate,
            "frais_administratif": fee,
        }

    def _insert_items(self, tx: TransactionContext, document_id: UUID, items: list[LineItemCreate]) -> None:
        """Insert items for a document. Without explicit ordre values, payload order is kept."""
        explicit_order = any(item.ordre for item in items)
        now = now_utc()

        params_list = []
        for index, item in enumerate(items):
            values = item.model_dump()
            values.update({
                "id": uuid4(),
                "document_id": document_id,
                "ordre": item.ordre if explicit_order else index,
                "created_at": now,
                "updated_at": now,
            })
            params_list.append(tuple(values[column] for column in _LINE_ITEM_COLUMNS))

        tx.execute_batch(_insert_sql("lignes_documents", _LINE_ITEM_COLUMNS), params_list)

    def _fetch_items(self, tx: TransactionContext, document_id: UUID) -> list[LineItem]:
        rows = tx.execute(
            "SELECT * FROM lignes_documents WHERE document_id = %s ORDER BY ordre ASC",
            (document_id,)
        )
        return [LineItem.model_validate(row) for row in rows]

    def _fetch_detail(self, tx: TransactionContext, document_id: UUID, lock: bool = False) -> DocumentDetail | None:
        query = _DETAIL_SELECT + (" FOR UPDATE OF d" if lock else "")
        row = tx.execute_single(query, (document_id,))
        if row is None:
            return None

        detail = DocumentDetail.model_validate(row)
        detail.items = self._fetch_items(tx, document_id)
        return detail

    def _lock_document(self, tx: TransactionContext, document_id: UUID) -> Document:
        row = tx.execute_single(
            "SELECT * FROM documents WHERE id = %s FOR UPDATE",
            (document_id,)
        )
        if row is None:
            raise NotFoundError("Document", document_id)
        return Document.model_validate(row)

    def _set_statut(self, tx: TransactionContext, current: Document, requested: DocumentStatus) -> None:
        if not can_transition(current.statut, requested):
            raise StatusTransitionError(current.statut.value, requested.value)
        tx.execute(
            "UPDATE documents SET statut = %s, updated_at = %s WHERE id = %s",
            (requested.value, now_utc(), current.id)
        )

    def _require_parties(self, tx: TransactionContext, entreprise_id: UUID, client_id: UUID) -> None:
        if tx.execute_single("SELECT id FROM entreprises WHERE id = %s", (entreprise_id,)) is None:
            raise NotFoundError("Entreprise", entreprise_id)
        if tx.execute_single("SELECT id FROM clients WHERE id = %s", (client_id,)) is None:
            raise NotFoundError("Client", client_id)

    @staticmethod
    def _copy_payload(source: DocumentDetail, **overrides) -> DocumentCreate:
        """Creation payload reproducing source with its items."""
        payload = {
            "type_document": source.type_document,
            "categorie_facture": source.categorie_facture,
            "client_id": source.client_id,
            "entreprise_id": source.entreprise_id,
            "date_emission": source.date_emission,
            "date_echeance": source.date_echeance,
            "taux_tva": source.taux_tva,
            "montant_ht": source.montant_ht,
            "montant_tva": source.montant_tva,
            "montant_ttc": source.montant_ttc,
            "remise_globale": source.remise_globale,
            "frais_administratif": source.frais_administratif,
            "devise": source.devise,
            "conditions_paiement": source.conditions_paiement,
            "notes": source.notes,
            "document_origine_id": source.id,
            "items": [item.to_create() for item in source.items] or None,
        }
        payload.update(overrides)
        return DocumentCreate.model_validate(payload)

    @staticmethod
    def _unique_violation(error: pg_errors.UniqueViolation, numero: str | None) -> Exception:
        constraint = getattr(error.diag, "constraint_name", None)
        if constraint == _NUMERO_CONSTRAINT:
            logger.warning(f"Document number collision on {numero}")
            return NumberingConflictError(numero)
        logger.error(f"Unique constraint {constraint} violated: {error}")
        return TransactionFailure(f"Unique constraint violated: {constraint}")
