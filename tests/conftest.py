"""Shared test fixtures for the document engine test suite."""

import os
from pathlib import Path
from uuid import UUID

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset settings singleton to pick up env vars
import clients.settings as settings_module
settings_module._settings_instance = None

SCHEMA_PATH = Path(__file__).parent.parent / "sql" / "schema.sql"


# =============================================================================
# TEST ENTITY CONSTANTS
# =============================================================================

TEST_ENTREPRISE_ID = UUID("00000000-0000-0000-0000-0000000000e1")
TEST_ENTREPRISE_PREFIX = "HRAKIN"

TEST_CLIENT_ID = UUID("00000000-0000-0000-0000-0000000000c1")
TEST_CLIENT_B_ID = UUID("00000000-0000-0000-0000-0000000000c2")


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """
    Session-scoped PostgresClient with the schema applied.

    Skips database tests when FACTURATION_DATABASE_URL is not set.
    """
    if not os.getenv("FACTURATION_DATABASE_URL"):
        pytest.skip("FACTURATION_DATABASE_URL not set, database tests skipped")

    from clients.postgres_client import PostgresClient

    client = PostgresClient.from_settings()
    client.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    yield client
    client.close()


@pytest.fixture
def reset_db_state(db):
    """Empty document tables and recreate the reference entreprise and clients."""
    db.execute("TRUNCATE corbeille, lignes_documents, documents, clients, entreprises CASCADE")

    db.execute(
        """
        INSERT INTO entreprises (id, nom, adresse, telephone, email, prefix_facture)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (TEST_ENTREPRISE_ID, "Heraclion Transport", "12 avenue du Port, Kinshasa",
         "+243 81 000 0000", "contact@heraclion.test", TEST_ENTREPRISE_PREFIX)
    )
    db.execute(
        """
        INSERT INTO clients (id, nom, adresse, ville, telephone, email)
        VALUES (%s, %s, %s, %s, %s, %s), (%s, %s, %s, %s, %s, %s)
        """,
        (TEST_CLIENT_ID, "Mines du Katanga", "3 rue des Mines", "Lubumbashi",
         "+243 97 000 0000", "compta@mines.test",
         TEST_CLIENT_B_ID, "Brasserie du Fleuve", "8 quai Nord", "Matadi",
         None, None)
    )
    yield


@pytest.fixture
def entreprise_id() -> UUID:
    """The reference entreprise (prefix HRAKIN)."""
    return TEST_ENTREPRISE_ID


@pytest.fixture
def client_id() -> UUID:
    """The primary reference client."""
    return TEST_CLIENT_ID


@pytest.fixture
def client_b_id() -> UUID:
    """A second client, for duplication to another customer."""
    return TEST_CLIENT_B_ID


# =============================================================================
# RENDERING FIXTURES
# =============================================================================


@pytest.fixture
def render_config():
    """Default render configuration."""
    from core.rendering.config import RenderConfig

    return RenderConfig()


@pytest.fixture
def sample_detail():
    """An unsaved non-transport invoice with display fields, ready to render."""
    from datetime import date, datetime, timezone
    from decimal import Decimal
    from uuid import uuid4

    from core.models import DocumentDetail

    now = datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc)
    return DocumentDetail(
        id=uuid4(),
        numero="HRAKIN/0007/03/2024",
        type_document="facture",
        categorie_facture="non-transport",
        client_id=TEST_CLIENT_ID,
        entreprise_id=TEST_ENTREPRISE_ID,
        date_emission=date(2024, 3, 14),
        date_echeance=date(2024, 4, 13),
        statut="emise",
        taux_tva=Decimal("20"),
        montant_ht=Decimal("1300.00"),
        montant_tva=Decimal("230.00"),
        montant_ttc=Decimal("1530.00"),
        remise_globale=Decimal("0"),
        frais_administratif=Decimal("0"),
        devise="EUR",
        conditions_paiement="30 jours",
        notes=None,
        created_at=now,
        updated_at=now,
        entreprise_nom="Heraclion Transport",
        entreprise_adresse="12 avenue du Port, Kinshasa",
        client_nom="Mines du Katanga",
        client_ville="Lubumbashi",
    )


@pytest.fixture
def make_line_item():
    """Factory for stored LineItems used by rendering tests."""
    from datetime import datetime, timezone
    from decimal import Decimal
    from uuid import uuid4

    from core.models import LineItem

    now = datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc)

    def factory(document_id, index: int, **overrides):
        values = {
            "id": uuid4(),
            "document_id": document_id,
            "description": f"Prestation {index + 1}",
            "quantite": Decimal("1"),
            "prix_unitaire": Decimal("100.00"),
            "taux_tva": None,
            "montant_ht": Decimal("100.00"),
            "montant_tva": None,
            "montant_ttc": None,
            "ordre": index,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return LineItem(**values)

    return factory
