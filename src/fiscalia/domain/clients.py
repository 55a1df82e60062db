"""Client resolution against the client directory.

Resolution order: exact document match (authoritative), then
case-insensitive partial name match. Name alone is never a unique key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from fiscalia.domain.entities import DocumentKind, DocumentNumber
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import mask_document, safe_log_context

if TYPE_CHECKING:
    from fiscalia.domain.ports import ClientDirectory

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClientRecord:
    """Client owned by an account. Unique per (owner_id, document)."""

    id: str
    owner_id: str
    name: str
    document: str
    kind: DocumentKind
    email: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "document": self.document,
            "documentType": self.kind.value,
            "email": self.email,
            "phone": self.phone,
        }


@dataclass(frozen=True)
class UnresolvedClient:
    """Client reference pending creation."""

    name: str | None = None
    document: DocumentNumber | None = None


class ResolutionStatus(str, Enum):
    FOUND = "found"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ClientResolution:
    """Result of resolve_client.

    ``candidates`` is only filled for AMBIGUOUS, in the directory's stable
    order. ``unresolved`` carries what was asked for when NOT_FOUND.
    """

    status: ResolutionStatus
    client: ClientRecord | None = None
    candidates: tuple[ClientRecord, ...] = field(default=())
    unresolved: UnresolvedClient | None = None

    @property
    def can_auto_create(self) -> bool:
        """NOT_FOUND with both a valid document and a name."""
        return (
            self.status is ResolutionStatus.NOT_FOUND
            and self.unresolved is not None
            and self.unresolved.document is not None
            and bool(self.unresolved.name)
        )


def resolve_client(
    directory: ClientDirectory,
    owner_id: str,
    *,
    name: str | None = None,
    document: DocumentNumber | None = None,
) -> ClientResolution:
    """Resolve a client reference to a record.

    Args:
        directory: Client directory.
        owner_id: Account that owns the clients.
        name: Name fragment, matched case-insensitively.
        document: CPF/CNPJ; authoritative when present.

    Returns:
        ClientResolution. Never raises for "no match".
    """
    unresolved = UnresolvedClient(name=name, document=document)

    if document is not None:
        record = directory.find_by_document(owner_id, document.digits)
        if record is not None:
            return ClientResolution(status=ResolutionStatus.FOUND, client=record)
        # A valid document with no match is authoritative: do not fall
        # back to a name match that could belong to someone else.
        return ClientResolution(status=ResolutionStatus.NOT_FOUND, unresolved=unresolved)

    if not name or not name.strip():
        return ClientResolution(status=ResolutionStatus.NOT_FOUND, unresolved=unresolved)

    matches = directory.find_by_name_contains(owner_id, name.strip())
    if len(matches) == 1:
        return ClientResolution(status=ResolutionStatus.FOUND, client=matches[0])
    if len(matches) > 1:
        return ClientResolution(
            status=ResolutionStatus.AMBIGUOUS,
            candidates=tuple(matches),
            unresolved=unresolved,
        )
    return ClientResolution(status=ResolutionStatus.NOT_FOUND, unresolved=unresolved)


def ensure_client(
    directory: ClientDirectory,
    owner_id: str,
    *,
    name: str,
    document: DocumentNumber,
    email: str | None = None,
    phone: str | None = None,
) -> ClientRecord:
    """Return the client with this document, creating it if needed.

    Idempotent on (owner_id, document): a second call returns the first
    record unchanged.
    """
    existing = directory.find_by_document(owner_id, document.digits)
    if existing is not None:
        return existing

    record = directory.create(owner_id, name=name.strip(), document=document, email=email, phone=phone)
    logger.info(
        "client created",
        extra={
            "extra_fields": safe_log_context(
                client_id=record.id,
                document=mask_document(document.digits),
                kind=document.kind.value,
            )
        },
    )
    return record
