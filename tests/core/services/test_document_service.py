"""Tests for DocumentService."""

import pytest
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock
from uuid import uuid4

import psycopg2
from psycopg2 import errors as pg_errors


@pytest.fixture
def document_service(db, reset_db_state):
    """DocumentService with real DB and clean tables."""
    from core.services.document_service import DocumentService

    return DocumentService(db)


def _payload(entreprise_id, client_id, **overrides):
    """Creation payload for a non-transport invoice dated 14 March 2024."""
    data = {
        "entreprise_id": entreprise_id,
        "client_id": client_id,
        "date_emission": date(2024, 3, 14),
        "items": [
            {"description": "Transport Kinshasa - Matadi", "quantite": "2", "prix_unitaire": "500", "taux_tva": "20"},
            {"description": "Manutention", "quantite": "1", "prix_unitaire": "300", "taux_tva": "10"},
        ],
    }
    data.update(overrides)
    return data


def _count(db, table):
    return db.execute_scalar(f"SELECT count(*) FROM {table}")


class TestDocumentCreate:
    """Tests for DocumentService.create_document."""

    def test_creates_document_with_totals(self, db, document_service, entreprise_id, client_id):
        """Header totals are computed from the items."""
        document = document_service.create_document(_payload(entreprise_id, client_id))

        assert document.montant_ht == Decimal("1300.00")
        assert document.montant_tva == Decimal("230.00")
        assert document.montant_ttc == Decimal("1530.00")
        assert _count(db, "lignes_documents") == 2

    def test_generates_number_from_document_date(self, db, document_service, entreprise_id, client_id):
        """Number uses the entreprise prefix and the document month."""
        document = document_service.create_document(_payload(entreprise_id, client_id))

        assert document.numero == "HRAKIN/0001/03/2024"

    def test_numbers_increase_within_period(self, db, document_service, entreprise_id, client_id):
        first = document_service.create_document(_payload(entreprise_id, client_id))
        second = document_service.create_document(_payload(entreprise_id, client_id))

        assert first.numero == "HRAKIN/0001/03/2024"
        assert second.numero == "HRAKIN/0002/03/2024"

    def test_transport_and_proforma_sequences_are_separate(self, db, document_service, entreprise_id, client_id):
        document_service.create_document(_payload(entreprise_id, client_id))

        transport = document_service.create_document(
            _payload(entreprise_id, client_id, categorie_facture="transport")
        )
        proforma = document_service.create_document(
            _payload(entreprise_id, client_id, type_document="proforma")
        )

        assert transport.numero == "HRAKIN/0001/T/03/2024"
        assert proforma.numero == "PROFORMA HRAKIN/0001/03/2024"

    def test_quote_gets_temporary_number(self, db, document_service, entreprise_id, client_id):
        from core.numbering import is_temp_numero

        devis = document_service.create_document(_payload(entreprise_id, client_id, type_document="devis"))

        assert is_temp_numero(devis.numero)

    def test_keeps_valid_caller_number(self, db, document_service, entreprise_id, client_id):
        document = document_service.create_document(
            _payload(entreprise_id, client_id, numero="HRAKIN/0042/03/2024")
        )

        assert document.numero == "HRAKIN/0042/03/2024"

    def test_rejects_malformed_caller_number(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import DocumentValidationError

        with pytest.raises(DocumentValidationError, match="does not match"):
            document_service.create_document(_payload(entreprise_id, client_id, numero="FACT-42"))

        assert _count(db, "documents") == 0

    def test_duplicate_number_conflicts(self, db, document_service, entreprise_id, client_id):
        """Unique index turns a taken number into a retryable error."""
        from core.exceptions import NumberingConflictError

        document_service.create_document(_payload(entreprise_id, client_id, numero="HRAKIN/0042/03/2024"))

        with pytest.raises(NumberingConflictError) as exc_info:
            document_service.create_document(_payload(entreprise_id, client_id, numero="HRAKIN/0042/03/2024"))

        assert exc_info.value.retryable is True
        assert _count(db, "documents") == 1
        assert _count(db, "lignes_documents") == 2

    def test_unknown_client(self, db, document_service, entreprise_id):
        from core.exceptions import NotFoundError

        with pytest.raises(NotFoundError, match="Client"):
            document_service.create_document(_payload(entreprise_id, uuid4()))

        assert _count(db, "documents") == 0

    def test_invalid_payload(self, db, document_service, entreprise_id, client_id):
        """Pydantic errors surface as DocumentValidationError."""
        from core.exceptions import DocumentValidationError

        with pytest.raises(DocumentValidationError):
            document_service.create_document(_payload(entreprise_id, client_id, devise="euro"))

    def test_mixed_vat_items_rejected(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import DocumentValidationError

        items = [
            {"description": "A", "quantite": "1", "prix_unitaire": "100", "taux_tva": "20"},
            {"description": "B", "quantite": "1", "prix_unitaire": "100"},
        ]

        with pytest.raises(DocumentValidationError, match="mix"):
            document_service.create_document(_payload(entreprise_id, client_id, items=items))

        assert _count(db, "documents") == 0

    def test_item_failure_rolls_back_header(self, db, document_service, entreprise_id, client_id, monkeypatch):
        """A failing item insert leaves neither the header nor any item."""
        from core.exceptions import TransactionFailure

        def failing_insert(tx, document_id, items):
            raise psycopg2.DataError("value out of range")

        monkeypatch.setattr(document_service, "_insert_items", failing_insert)

        with pytest.raises(TransactionFailure) as exc_info:
            document_service.create_document(_payload(entreprise_id, client_id))

        assert isinstance(exc_info.value.__cause__, psycopg2.DataError)
        assert _count(db, "documents") == 0
        assert _count(db, "lignes_documents") == 0

    def test_without_items_uses_given_amounts(self, db, document_service, entreprise_id, client_id):
        document = document_service.create_document(_payload(
            entreprise_id, client_id,
            items=None,
            montant_ht="100.00",
            montant_tva="16.00",
        ))

        assert document.montant_ttc == Decimal("116.00")

    def test_without_items_rejects_inconsistent_ttc(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import DocumentValidationError

        with pytest.raises(DocumentValidationError, match="montant_ttc"):
            document_service.create_document(_payload(
                entreprise_id, client_id,
                items=None,
                montant_ht="100.00",
                montant_tva="16.00",
                montant_ttc="120.00",
            ))


class TestDocumentGet:
    """Tests for get_by_id and find_by_id_with_items."""

    def test_get_by_id(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        fetched = document_service.get_by_id(created.id)

        assert fetched is not None
        assert fetched.numero == created.numero

    def test_get_by_id_missing(self, db, document_service):
        assert document_service.get_by_id(uuid4()) is None

    def test_detail_includes_parties_and_ordered_items(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        detail = document_service.find_by_id_with_items(created.id)

        assert detail.entreprise_nom == "Heraclion Transport"
        assert detail.client_nom == "Mines du Katanga"
        assert detail.client_ville == "Lubumbashi"
        assert [item.description for item in detail.items] == ["Transport Kinshasa - Matadi", "Manutention"]
        assert [item.ordre for item in detail.items] == [0, 1]

    def test_explicit_order_is_kept(self, db, document_service, entreprise_id, client_id):
        items = [
            {"description": "Second", "quantite": "1", "prix_unitaire": "10", "ordre": 2},
            {"description": "First", "quantite": "1", "prix_unitaire": "10", "ordre": 1},
        ]
        created = document_service.create_document(_payload(entreprise_id, client_id, items=items))

        detail = document_service.find_by_id_with_items(created.id)

        assert [item.description for item in detail.items] == ["First", "Second"]

    def test_detail_missing_raises(self, db, document_service):
        from core.exceptions import NotFoundError

        with pytest.raises(NotFoundError, match="Document"):
            document_service.find_by_id_with_items(uuid4())


class TestDocumentUpdate:
    """Tests for DocumentService.update_document."""

    def test_replaces_items_and_recomputes(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        updated = document_service.update_document(created.id, {
            "items": [{"description": "Forfait", "quantite": "1", "prix_unitaire": "200", "taux_tva": "20"}],
        })

        assert updated.montant_ht == Decimal("200.00")
        assert updated.montant_tva == Decimal("40.00")
        assert updated.montant_ttc == Decimal("240.00")
        detail = document_service.find_by_id_with_items(created.id)
        assert [item.description for item in detail.items] == ["Forfait"]

    def test_header_only_keeps_items(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        updated = document_service.update_document(created.id, {"notes": "Livraison urgente"})

        assert updated.notes == "Livraison urgente"
        assert updated.montant_ttc == Decimal("1530.00")
        assert _count(db, "lignes_documents") == 2

    def test_fee_change_recomputes_from_stored_items(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        updated = document_service.update_document(created.id, {"frais_administratif": "50"})

        assert updated.montant_ht == Decimal("1350.00")
        assert updated.montant_tva == Decimal("240.00")  # 230 + 50 * 20%
        assert updated.montant_ttc == Decimal("1590.00")

    def test_empty_item_list_clears_items(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        updated = document_service.update_document(created.id, {"items": []})

        assert updated.montant_ht == Decimal("0.00")
        assert updated.montant_ttc == Decimal("0.00")
        assert _count(db, "lignes_documents") == 0

    def test_missing_document(self, db, document_service):
        from core.exceptions import NotFoundError

        with pytest.raises(NotFoundError):
            document_service.update_document(uuid4(), {"notes": "x"})

    def test_rejects_due_date_before_issue_date(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import DocumentValidationError

        created = document_service.create_document(_payload(entreprise_id, client_id))

        with pytest.raises(DocumentValidationError, match="date_echeance"):
            document_service.update_document(created.id, {"date_echeance": date(2024, 1, 1)})


class TestDocumentSearch:
    """Tests for DocumentService.search_documents."""

    def test_filters_by_client(self, db, document_service, entreprise_id, client_id, client_b_id):
        document_service.create_document(_payload(entreprise_id, client_id))
        document_service.create_document(_payload(entreprise_id, client_b_id))

        results = document_service.search_documents({"client_id": client_b_id})

        assert len(results) == 1
        assert results[0].client_nom == "Brasserie du Fleuve"
        assert results[0].entreprise_nom == "Heraclion Transport"

    def test_numero_substring_is_case_insensitive(self, db, document_service, entreprise_id, client_id):
        document_service.create_document(_payload(entreprise_id, client_id))
        document_service.create_document(_payload(entreprise_id, client_id, type_document="proforma"))

        results = document_service.search_documents({"numero": "proforma"})

        assert [doc.numero for doc in results] == ["PROFORMA HRAKIN/0001/03/2024"]

    def test_numero_wildcards_match_literally(self, db, document_service, entreprise_id, client_id):
        document_service.create_document(_payload(entreprise_id, client_id))
        document_service.create_document(_payload(entreprise_id, client_id))

        assert document_service.search_documents({"numero": "HRAKIN/000_/"}) == []
        assert document_service.search_documents({"numero": "%"}) == []
        assert len(document_service.search_documents({"numero": "HRAKIN/000"})) == 2

    def test_date_range_and_order(self, db,document_service, entreprise_id, client_id):
        for day in (1, 10, 20):
            document_service.create_document(_payload(entreprise_id, client_id, date_emission=date(2024, 3, day)))

        results = document_service.search_documents({
            "date_debut": date(2024, 3, 5),
            "date_fin": date(2024, 3, 31),
        })

        assert [doc.date_emission.day for doc in results] == [20, 10]

    def test_pagination(self, db, document_service, entreprise_id, client_id):
        for day in range(1, 6):
            document_service.create_document(_payload(entreprise_id, client_id, date_emission=date(2024, 3, day)))

        first_page = document_service.search_documents({"limit": 2})
        second_page = document_service.search_documents({"limit": 2, "offset": 2})

        assert [doc.date_emission.day for doc in first_page] == [5, 4]
        assert [doc.date_emission.day for doc in second_page] == [3, 2]

    def test_filters_by_status_and_type(self, db, document_service, entreprise_id, client_id):
        document_service.create_document(_payload(entreprise_id, client_id, statut="emise"))
        document_service.create_document(_payload(entreprise_id, client_id, type_document="devis"))

        emises = document_service.search_documents({"statut": "emise"})
        devis = document_service.search_documents({"type_document": "devis"})

        assert len(emises) == 1
        assert len(devis) == 1
        assert devis[0].type_document.value == "devis"


class TestDocumentStatus:
    """Tests for DocumentService.update_statut."""

    def test_issue_draft(self, db, document_service, entreprise_id, client_id):
        from core.models import DocumentStatus

        created = document_service.create_document(_payload(entreprise_id, client_id))

        issued = document_service.update_statut(created.id, "emise")

        assert issued.statut == DocumentStatus.EMISE

    def test_disallowed_move(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import StatusTransitionError

        created = document_service.create_document(_payload(entreprise_id, client_id))

        with pytest.raises(StatusTransitionError, match="brouillon"):
            document_service.update_statut(created.id, "payee")

    def test_terminal_status(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import StatusTransitionError

        created = document_service.create_document(_payload(entreprise_id, client_id, statut="emise"))
        document_service.update_statut(created.id, "payee")

        with pytest.raises(StatusTransitionError):
            document_service.update_statut(created.id, "annule")

    def test_same_status_is_noop(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        same = document_service.update_statut(created.id, "brouillon")

        assert same.updated_at == created.updated_at

    def test_unknown_status(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import DocumentValidationError

        created = document_service.create_document(_payload(entreprise_id, client_id))

        with pytest.raises(DocumentValidationError, match="Unknown status"):
            document_service.update_statut(created.id, "archive")


class TestProformaConversion:
    """Tests for DocumentService.convert_proforma."""

    def test_converts_to_invoice(self, db, document_service, entreprise_id, client_id):
        from core.models import DocumentStatus, DocumentType

        proforma = document_service.create_document(
            _payload(entreprise_id, client_id, type_document="proforma", statut="emise")
        )

        invoice = document_service.convert_proforma(proforma.id, date_emission=date(2024, 4, 2))

        assert invoice.type_document == DocumentType.FACTURE
        assert invoice.statut == DocumentStatus.EMISE
        assert invoice.numero == "HRAKIN/0001/04/2024"
        assert invoice.date_echeance == date(2024, 5, 2)
        assert invoice.document_origine_id == proforma.id
        assert invoice.montant_ttc == proforma.montant_ttc
        assert len(document_service.find_by_id_with_items(invoice.id).items) == 2
        assert document_service.get_by_id(proforma.id).statut == DocumentStatus.CONVERTI

    def test_rejects_invoice(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import DocumentValidationError

        facture = document_service.create_document(_payload(entreprise_id, client_id, statut="emise"))

        with pytest.raises(DocumentValidationError, match="not a proforma"):
            document_service.convert_proforma(facture.id)

    def test_cannot_convert_twice(self, db, document_service, entreprise_id, client_id):
        from core.exceptions import StatusTransitionError

        proforma = document_service.create_document(
            _payload(entreprise_id, client_id, type_document="proforma", statut="emise")
        )
        document_service.convert_proforma(proforma.id)

        with pytest.raises(StatusTransitionError):
            document_service.convert_proforma(proforma.id)

        assert _count(db, "documents") == 2


class TestDocumentDuplicate:
    """Tests for DocumentService.duplicate_document."""

    def test_duplicates_with_new_number(self, db, document_service, entreprise_id, client_id, client_b_id):
        from core.models import DocumentStatus

        original = document_service.create_document(_payload(entreprise_id, client_id, statut="emise"))

        copy = document_service.duplicate_document(
            original.id, client_id=client_b_id, date_emission=date(2024, 3, 20)
        )

        assert copy.numero == "HRAKIN/0002/03/2024"
        assert copy.statut == DocumentStatus.BROUILLON
        assert copy.client_id == client_b_id
        assert copy.montant_ttc == original.montant_ttc
        assert copy.document_origine_id == original.id
        assert _count(db, "lignes_documents") == 4

    def test_missing_document(self, db, document_service):
        from core.exceptions import NotFoundError

        with pytest.raises(NotFoundError):
            document_service.duplicate_document(uuid4())


class TestDocumentDelete:
    """Tests for DocumentService.delete_document."""

    def test_archives_then_deletes(self, db, document_service, entreprise_id, client_id):
        created = document_service.create_document(_payload(entreprise_id, client_id))

        assert document_service.delete_document(created.id, deleted_by="comptable") is True

        assert _count(db, "documents") == 0
        assert _count(db, "lignes_documents") == 0

        entries = document_service.corbeille.list_entries("documents")
        assert len(entries) == 1
        assert entries[0]["utilisateur"] == "comptable"
        assert entries[0]["data"]["numero"] == created.numero
        assert len(entries[0]["data"]["items"]) == 2

    def test_missing_returns_false(self, db, document_service):
        assert document_service.delete_document(uuid4()) is False
        assert _count(db, "corbeille") == 0


# =============================================================================
# TRANSACTION BEHAVIOUR WITHOUT A DATABASE
# =============================================================================


class _FakePostgres:
    """Stands in for PostgresClient; records how the transaction ended."""

    def __init__(self, tx):
        self.tx = tx
        self.committed = False
        self.rolled_back = False

    @contextmanager
    def transaction(self):
        try:
            yield self.tx
            self.committed = True
        except BaseException:
            self.rolled_back = True
            raise


def _document_row(**overrides):
    now = datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc)
    row = {
        "id": uuid4(),
        "numero": "HRAKIN/0001/03/2024",
        "type_document": "facture",
        "categorie_facture": "non-transport",
        "client_id": uuid4(),
        "entreprise_id": uuid4(),
        "date_emission": date(2024, 3, 14),
        "date_echeance": None,
        "statut": "brouillon",
        "taux_tva": Decimal("20"),
        "montant_ht": Decimal("1300.00"),
        "montant_tva": Decimal("230.00"),
        "montant_ttc": Decimal("1530.00"),
        "remise_globale": Decimal("0"),
        "frais_administratif": Decimal("0"),
        "devise": "EUR",
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def _mock_tx():
    tx = Mock()
    tx.execute_single.return_value = {"id": uuid4(), "prefix_facture": "HRAKIN"}
    tx.execute.return_value = []
    tx.execute_returning.return_value = [_document_row()]
    return tx


class TestTransactionBoundaries:
    """Rollback and error mapping, checked on a fake client."""

    def _service(self, tx):
        from core.services.document_service import DocumentService

        postgres = _FakePostgres(tx)
        return DocumentService(postgres), postgres

    def test_success_commits_once(self):
        tx = _mock_tx()
        service, postgres = self._service(tx)

        service.create_document(_payload(uuid4(), uuid4()))

        assert postgres.committed
        assert not postgres.rolled_back
        params_list = tx.execute_batch.call_args[0][1]
        assert len(params_list) == 2

    def test_driver_error_rolls_back_and_wraps(self):
        from core.exceptions import TransactionFailure

        tx = _mock_tx()
        tx.execute_batch.side_effect = psycopg2.OperationalError("connection lost")
        service, postgres = self._service(tx)

        with pytest.raises(TransactionFailure) as exc_info:
            service.create_document(_payload(uuid4(), uuid4()))

        assert postgres.rolled_back
        assert not postgres.committed
        assert isinstance(exc_info.value.__cause__, psycopg2.OperationalError)

    def test_domain_error_propagates_unchanged(self):
        from core.exceptions import NotFoundError

        tx = _mock_tx()
        tx.execute_single.return_value = None
        service, postgres = self._service(tx)

        with pytest.raises(NotFoundError, match="Entreprise"):
            service.create_document(_payload(uuid4(), uuid4()))

        assert postgres.rolled_back
        tx.execute_returning.assert_not_called()

    def test_numero_unique_violation_is_conflict(self):
        from core.exceptions import NumberingConflictError

        class NumeroTaken(pg_errors.UniqueViolation):
            diag = SimpleNamespace(constraint_name="documents_numero_key")

        tx = _mock_tx()
        tx.execute_returning.side_effect = NumeroTaken("duplicate key")
        service, postgres = self._service(tx)

        with pytest.raises(NumberingConflictError):
            service.create_document(_payload(uuid4(), uuid4(), numero="HRAKIN/0001/03/2024"))

        assert postgres.rolled_back

    def test_other_unique_violation_is_failure(self):
        from core.exceptions import TransactionFailure

        class OtherKey(pg_errors.UniqueViolation):
            diag = SimpleNamespace(constraint_name="lignes_documents_pkey")

        tx = _mock_tx()
        tx.execute_batch.side_effect = OtherKey("duplicate key")
        service, postgres = self._service(tx)

        with pytest.raises(TransactionFailure, match="lignes_documents_pkey"):
            service.create_document(_payload(uuid4(), uuid4()))

    def test_header_insert_uses_fixed_columns(self):
        """Payload keys never reach the SQL text."""
        tx = _mock_tx()
        service, _ = self._service(tx)

        service.create_document(_payload(uuid4(), uuid4()))

        query, params = tx.execute_returning.call_args[0]
        assert query.startswith("INSERT INTO documents (id, numero, type_document")
        assert "%s" in query
        assert Decimal("1530.00") in params

    def test_update_sets_only_allowed_columns(self):
        from core.services.document_service import _UPDATABLE_COLUMNS

        tx = _mock_tx()
        tx.execute_single.return_value = _document_row()
        service, _ = self._service(tx)

        service.update_document(uuid4(), {"notes": "ok"})

        query = tx.execute_returning.call_args[0][0]
        assert "notes = %s" in query
        set_clause = query.split("SET", 1)[1].split("WHERE", 1)[0]
        for part in set_clause.split(","):
            column = part.strip().split(" ", 1)[0]
            assert column in _UPDATABLE_COLUMNS | {"updated_at"}

    def test_conversion_due_date_uses_config(self):
        from core.config import EngineConfig
        from core.services.document_service import DocumentService

        proforma_row = _document_row(type_document="proforma", statut="emise", numero="PROFORMA HRAKIN/0001/03/2024")
        tx = _mock_tx()
        tx.execute_single.side_effect = lambda query, params=None: (
            proforma_row if "FROM documents d" in query else {"id": uuid4(), "prefix_facture": "HRAKIN"}
        )
        postgres = _FakePostgres(tx)
        service = DocumentService(postgres, config=EngineConfig(payment_delay_days=15))

        service.convert_proforma(proforma_row["id"], date_emission=date(2024, 4, 1))

        insert_params = tx.execute_returning.call_args[0][1]
        assert date(2024, 4, 16) in insert_params
        assert postgres.committed

    def test_delete_driver_error_rolls_back_and_wraps(self):
        from core.exceptions import TransactionFailure

        tx = _mock_tx()
        tx.execute_single.side_effect = psycopg2.OperationalError("connection lost")
        service, postgres = self._service(tx)

        with pytest.raises(TransactionFailure, match="deletion failed") as exc_info:
            service.delete_document(uuid4())

        assert postgres.rolled_back
        assert isinstance(exc_info.value.__cause__, psycopg2.OperationalError)

    def test_delete_fails_after_archiving(self):
        """The corbeille copy is rolled back with the failed delete."""
        from core.exceptions import TransactionFailure

        def execute(query, params=None):
            if query.startswith("DELETE FROM documents"):
                raise pg_errors.ForeignKeyViolation("still referenced")
            return []

        tx = _mock_tx()
        tx.execute_single.return_value = _document_row()
        tx.execute.side_effect = execute
        service, postgres = self._service(tx)

        with pytest.raises(TransactionFailure):
            service.delete_document(uuid4())

        archived = [call for call in tx.execute.call_args_list if "INSERT INTO corbeille" in call[0][0]]
        assert len(archived) == 1
        assert postgres.rolled_back
        assert not postgres.committed

    def test_status_driver_error_rolls_back_and_wraps(self):
        from core.exceptions import TransactionFailure

        tx = _mock_tx()
        tx.execute_single.return_value = _document_row(statut="brouillon")
        tx.execute.side_effect = psycopg2.OperationalError("connection lost")
        service, postgres = self._service(tx)

        with pytest.raises(TransactionFailure, match="Status change failed"):
            service.update_statut(uuid4(), "emise")

        assert postgres.rolled_back
        assert not postgres.committed

    def test_status_domain_error_is_not_wrapped(self):
        from core.exceptions import StatusTransitionError

        tx = _mock_tx()
        tx.execute_single.return_value = _document_row(statut="payee")
        service, postgres = self._service(tx)

        with pytest.raises(StatusTransitionError):
            service.update_statut(uuid4(), "brouillon")

        assert postgres.rolled_back


class TestSearchQuery:
    """SQL built by search_documents, checked on a mock client."""

    def test_escapes_numero_wildcards(self):
        from core.services.document_service import DocumentService

        postgres = Mock()
        postgres.execute.return_value = []
        service = DocumentService(postgres)

        service.search_documents({"numero": "HRAKIN/0007_%"})

        query, params = postgres.execute.call_args[0]
        assert "ILIKE %s ESCAPE" in query
        assert params[0] == "%HRAKIN/0007\\_\\%%"
