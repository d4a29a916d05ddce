"""
Document numbering: generate, parse, validate and advance reference numbers.

Grammar (wire-visible as the `numero` column):

    ["PROFORMA "] PREFIX "/" SEQ ["/T"] "/" MM "/" YYYY

    HRAKIN/0007/T/03/2024          transport invoice
    PROFORMA HRAKIN/0012/05/2024   non-transport proforma

SEQ is zero-padded to four digits and grows past 9999 without truncation.
Month and year come from the document date, not the wall clock.

The canonical numbering path is a database-side sequence. NumberGenerator
is the in-process fallback: it reads the highest sequence already stored
for the period and adds one, which is NOT collision-free under concurrent
callers. The unique index on documents.numero turns a collision into
NumberingConflictError.
"""

import logging
import re
import secrets
import string
import time
from datetime import date
from uuid import UUID

from pydantic import BaseModel

from clients.postgres_client import TransactionContext
from core.exceptions import DocumentValidationError, InvalidFormatError, NotFoundError
from core.models.document import CategorieFacture, DocumentType

logger = logging.getLogger(__name__)

PROFORMA_LITERAL = "PROFORMA "

_NUMERO_RE = re.compile(
    r"^(?P<proforma>PROFORMA )?"
    r"(?P<prefix>[A-Z]+)/"
    r"(?P<sequence>\d{4}|[1-9]\d{4,})"
    r"(?P<transport>/T)?/"
    r"(?P<month>\d{2})/"
    r"(?P<year>\d{4})$"
)

# Numbering types that follow the grammar, keyed as (is_proforma, is_transport)
_NUMBERING_TYPES = {
    (False, True): "facture_transport",
    (False, False): "facture_non_transport",
    (True, True): "proforma_transport",
    (True, False): "proforma_non_transport",
}

_PREFIX_RE = re.compile(r"^[A-Z]+$")


class ParsedNumero(BaseModel):
    """Components of a document number. valid is False for malformed input."""

    prefix: str = ""
    sequence: int = 0
    is_transport: bool = False
    month: int = 0
    year: int = 0
    is_proforma: bool = False
    valid: bool = False

    model_config = {"frozen": True}

    @property
    def numbering_type(self) -> str:
        return _NUMBERING_TYPES[(self.is_proforma, self.is_transport)]

    def format(self) -> str:
        """Serialize back to the canonical string."""
        return format_numero(
            self.prefix, self.sequence, self.is_transport,
            self.month, self.year, self.is_proforma,
        )


def numbering_type(type_document: DocumentType, categorie: CategorieFacture) -> str | None:
    """
    Grammar key for a document, or None when its type has no numbering grammar.

    Only invoices and proformas are numbered by the grammar.
    """
    if type_document not in (DocumentType.FACTURE, DocumentType.PROFORMA):
        return None
    return _NUMBERING_TYPES[(
        type_document == DocumentType.PROFORMA,
        categorie == CategorieFacture.TRANSPORT,
    )]


def format_numero(
    prefix: str,
    sequence: int,
    is_transport: bool,
    month: int,
    year: int,
    is_proforma: bool = False,
) -> str:
    """
    Build a document number.

    Raises:
        DocumentValidationError: If a component cannot be represented by the grammar
    """
    if not _PREFIX_RE.match(prefix or ""):
        raise DocumentValidationError(f"Numbering prefix must be uppercase letters: {prefix!r}")
    if sequence < 0:
        raise DocumentValidationError(f"Sequence must be positive: {sequence}")
    if not 1 <= month <= 12:
        raise DocumentValidationError(f"Month out of range: {month}")
    if not 1000 <= year <= 9999:
        raise DocumentValidationError(f"Year out of range: {year}")

    type_mark = "/T/" if is_transport else "/"
    numero = f"{prefix}/{sequence:04d}{type_mark}{month:02d}/{year}"
    return f"{PROFORMA_LITERAL}{numero}" if is_proforma else numero


def parse_numero(numero: str) -> ParsedNumero:
    """Split a document number into its components. Never raises."""
    if not isinstance(numero, str):
        return ParsedNumero()

    match = _NUMERO_RE.match(numero)
    if match is None:
        return ParsedNumero()

    month = int(match.group("month"))
    if not 1 <= month <= 12:
        return ParsedNumero()

    return ParsedNumero(
        prefix=match.group("prefix"),
        sequence=int(match.group("sequence")),
        is_transport=match.group("transport") is not None,
        month=month,
        year=int(match.group("year")),
        is_proforma=match.group("proforma") is not None,
        valid=True,
    )


def validate_numero(numero: str, numbering_type_key: str) -> bool:
    """Check a number against the grammar of one numbering type."""
    if numbering_type_key not in _NUMBERING_TYPES.values():
        logger.warning(f"Unknown numbering type '{numbering_type_key}' for {numero!r}")
        return False

    parsed = parse_numero(numero)
    if not parsed.valid:
        logger.warning(f"Invalid document number {numero!r} for {numbering_type_key}")
        return False
    return parsed.numbering_type == numbering_type_key


def next_numero(last_numero: str) -> str:
    """
    Number following last_numero: same prefix, type marks and period, sequence + 1.

    Raises:
        InvalidFormatError: If last_numero does not parse
    """
    parsed = parse_numero(last_numero)
    if not parsed.valid:
        raise InvalidFormatError(f"Cannot advance malformed document number: {last_numero!r}")
    return parsed.model_copy(update={"sequence": parsed.sequence + 1}).format()


def generate_temp_numero(prefix: str = "TEMP") -> str:
    """Unique placeholder number for documents outside the grammar."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"{prefix}/{timestamp}/{suffix}"


def is_temp_numero(numero: str | None, prefix: str = "TEMP") -> bool:
    return bool(numero) and numero.startswith(f"{prefix}/")


class NumberGenerator:
    """Fallback generator reading the last stored sequence of the period."""

    def __init__(self, default_prefix: str = "DOC"):
        self.default_prefix = default_prefix

    def get_prefix(self, tx: TransactionContext, entreprise_id: UUID) -> str:
        """
        Numbering prefix of an entreprise.

        Raises:
            NotFoundError: If the entreprise does not exist
        """
        row = tx.execute_single(
            "SELECT prefix_facture FROM entreprises WHERE id = %s",
            (entreprise_id,)
        )
        if row is None:
            raise NotFoundError("Entreprise", entreprise_id)
        return (row["prefix_facture"] or self.default_prefix).strip().upper()

    def generate(
        self,
        tx: TransactionContext,
        entreprise_id: UUID,
        type_document: DocumentType,
        categorie: CategorieFacture,
        document_date: date,
    ) -> str:
        """
        Next free number for (entreprise, type, month, year).

        Args:
            tx: Transaction the document will be inserted in
            entreprise_id: Owning entreprise (supplies the prefix)
            type_document: Must be facture or proforma
            categorie: Transport documents get the /T/ segment
            document_date: Date the period is taken from

        Returns:
            Formatted document number

        Raises:
            DocumentValidationError: If the type has no numbering grammar
            NotFoundError: If the entreprise does not exist
        """
        key = numbering_type(type_document, categorie)
        if key is None:
            raise DocumentValidationError(
                f"Document type '{type_document.value}' has no numbering grammar"
            )

        prefix = self.get_prefix(tx, entreprise_id)
        is_proforma = type_document == DocumentType.PROFORMA
        is_transport = categorie == CategorieFacture.TRANSPORT
        month, year = document_date.month, document_date.year

        literal = PROFORMA_LITERAL if is_proforma else ""
        rows = tx.execute(
            """
            SELECT numero FROM documents
            WHERE entreprise_id = %s AND numero LIKE %s
            """,
            (entreprise_id, f"{literal}{prefix}/%/{month:02d}/{year}")
        )

        # LIKE cannot tell "/0001/03/" from "/0001/T/03/", so filter on the parse
        last_sequence = 0
        for row in rows:
            parsed = parse_numero(row["numero"])
            if (
                parsed.valid
                and parsed.prefix == prefix
                and parsed.is_proforma == is_proforma
                and parsed.is_transport == is_transport
            ):
                last_sequence = max(last_sequence, parsed.sequence)

        numero = format_numero(prefix, last_sequence + 1, is_transport, month, year, is_proforma)
        logger.info(f"Generated fallback number {numero} for entreprise {entreprise_id}")
        return numero
