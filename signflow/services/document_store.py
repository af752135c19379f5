"""Document store adapters for conventions.

Documents cross this boundary as plain JSON-compatible dicts (the
``Convention.model_dump(mode="json")`` shape). Writes are field-level merges:
``update_fields`` takes dotted paths such as ``signatures.teacher`` so a write
only touches the keys it names, and an optional ``append`` mapping that adds
entries to list fields in the same atomic write.
"""
from __future__ import annotations
import copy
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signflow.core.context import WorkflowContext
from signflow.exceptions import NotFoundException, PersistenceError
from signflow.models.convention import ConventionRecord, SupersededCodeRecord
from signflow.schemas.convention import ROLE_ADDRESS_FIELDS, Convention, Role
from signflow.utils.datetime import ensure_aware_utc

logger = logging.getLogger("signflow.store")

Document = Dict[str, Any]


class DocumentStore(Protocol):
    def create(self, doc: Document) -> Document: ...

    def get_by_id(self, convention_id: str) -> Optional[Document]: ...

    def query_by_field(self, field: str, value: Any) -> List[Document]: ...

    def update_fields(self, convention_id: str, patch: Mapping[str, Any],
                      append: Optional[Mapping[str, List[Any]]] = None) -> Document: ...

    def append_to_list(self, convention_id: str, field: str, entry: Any) -> Document: ...

    def ping(self) -> bool: ...


def get_path(doc: Mapping[str, Any], path: str) -> Any:
    node: Any = doc
    for part in path.split("."):
        if isinstance(node, list) and part.isdigit():
            index = int(part)
            if index >= len(node):
                return None
            node = node[index]
        elif isinstance(node, Mapping) and part in node:
            node = node[part]
        else:
            return None
    return node


def set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path, creating missing dicts. Numeric parts index into existing lists."""
    *parents, leaf = path.split(".")
    node: Any = doc
    for part in parents:
        if isinstance(node, list):
            node = node[int(part)]
            continue
        child = node.get(part)
        if not isinstance(child, (dict, list)):
            child = {}
            node[part] = child
        node = child
    if isinstance(node, list):
        node[int(leaf)] = value
    else:
        node[leaf] = value


def apply_patch(doc: Document, patch: Mapping[str, Any],
                append: Optional[Mapping[str, List[Any]]] = None) -> Document:
    """Return a copy of ``doc`` with ``patch`` merged in and ``append`` entries added."""
    updated = copy.deepcopy(doc)
    for path, value in patch.items():
        set_path(updated, path, copy.deepcopy(value))
    for path, entries in (append or {}).items():
        current = get_path(updated, path)
        items = list(current) if isinstance(current, list) else []
        items.extend(copy.deepcopy(entries))
        set_path(updated, path, items)
    return updated


def _matches(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return any(_matches(item, expected) for item in actual)
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower() == expected.lower()
    return actual == expected


class InMemoryConventionStore:
    """Non-persistent store chosen at startup for demo mode and used by most tests."""

    def __init__(self):
        self._docs: Dict[str, Document] = {}
        self._lock = threading.Lock()

    def create(self, doc: Document) -> Document:
        with self._lock:
            if doc["id"] in self._docs:
                raise PersistenceError(f"Convention {doc['id']} already exists", convention_id=doc["id"])
            self._docs[doc["id"]] = copy.deepcopy(doc)
            return copy.deepcopy(doc)

    def get_by_id(self, convention_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(convention_id)
            return copy.deepcopy(doc) if doc is not None else None

    def query_by_field(self, field: str, value: Any) -> List[Document]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._docs.values() if _matches(get_path(d, field), value)]

    def update_fields(self, convention_id, patch, append=None) -> Document:
        with self._lock:
            doc = self._docs.get(convention_id)
            if doc is None:
                raise NotFoundException(f"Convention {convention_id} not found")
            updated = apply_patch(doc, patch, append)
            self._docs[convention_id] = updated
            return copy.deepcopy(updated)

    def append_to_list(self, convention_id: str, field: str, entry: Any) -> Document:
        return self.update_fields(convention_id, {}, append={field: [entry]})

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._docs)


def load_convention(store: DocumentStore, context: WorkflowContext, convention_id: str) -> Convention:
    """Fresh read from the store, scoped to the caller's school."""
    doc = store.get_by_id(convention_id)
    if doc is None or not context.can_see(doc.get("school_id")):
        raise NotFoundException(f"Convention {convention_id} not found")
    return Convention.model_validate(doc)


# SQL

ROW_FIELDS = (
    "id", "owner_id", "school_id", "status", "certificate_hash",
    "signatures", "attestation", "audit_logs", "absences", "feedbacks", "invalid_emails",
    "last_reminder_at", "created_at", "updated_at",
)
DATETIME_FIELDS = ("last_reminder_at", "created_at", "updated_at")
ADDRESS_COLUMNS = tuple(ROLE_ADDRESS_FIELDS.values()) + ("tracking_teacher_email",)

# Field paths that can be looked up, mapped to their indexed column
QUERYABLE_FIELDS: Dict[str, Any] = {
    "id": ConventionRecord.id,
    "status": ConventionRecord.status,
    "owner_id": ConventionRecord.owner_id,
    "school_id": ConventionRecord.school_id,
    "certificate_hash": ConventionRecord.certificate_hash,
    "attestation.code": ConventionRecord.attestation_code,
    "attestation.hash": ConventionRecord.attestation_hash,
    **{f"signatures.{role.value}.code": getattr(ConventionRecord, f"{role.value}_code") for role in Role},
    **{name: getattr(ConventionRecord, name) for name in ADDRESS_COLUMNS},
}

# Codes replaced by a re-sign live in their own table, one row per code
SUPERSEDED_CODE_FIELDS: Dict[str, str] = {f"signatures.{role.value}.previous_codes": role.value for role in Role}


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return ensure_aware_utc(value)
    return ensure_aware_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def record_to_document(row: ConventionRecord) -> Document:
    doc: Document = dict(row.data or {})
    for name in ROW_FIELDS:
        value = getattr(row, name)
        if name in DATETIME_FIELDS:
            value = ensure_aware_utc(value).isoformat() if value is not None else None
        doc[name] = copy.deepcopy(value)
    return doc


def write_document(row: ConventionRecord, doc: Document) -> None:
    row.data = {k: v for k, v in doc.items() if k not in ROW_FIELDS}
    for name in ROW_FIELDS:
        if name == "id":
            continue
        value = doc.get(name)
        if name in DATETIME_FIELDS:
            value = _parse_dt(value)
        setattr(row, name, value)
    for name in ("signatures", "attestation"):
        if getattr(row, name) is None:
            setattr(row, name, {})
    for name in ("audit_logs", "absences", "feedbacks", "invalid_emails"):
        if getattr(row, name) is None:
            setattr(row, name, [])
    for name in ADDRESS_COLUMNS:
        setattr(row, name, doc.get(name))
    for role in Role:
        setattr(row, f"{role.value}_code", get_path(doc, f"signatures.{role.value}.code"))
    row.attestation_code = get_path(doc, "attestation.code")
    row.attestation_hash = get_path(doc, "attestation.hash")
    known = {entry.code for entry in row.superseded_codes}
    for role in Role:
        for code in get_path(doc, f"signatures.{role.value}.previous_codes") or []:
            if code not in known:
                row.superseded_codes.append(SupersededCodeRecord(code=code, role=role.value))
                known.add(code)


class SqlConventionStore:
    """SQLAlchemy-backed store; every ``SQLAlchemyError`` surfaces as ``PersistenceError``."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _fail(self, db: Session, action: str, convention_id: Optional[str], e: Exception):
        db.rollback()
        logger.error(f"[store] {action} failed convention={convention_id}: {e}")
        raise PersistenceError(f"Could not {action} convention; please retry", convention_id=convention_id) from e

    def create(self, doc: Document) -> Document:
        db = self.session_factory()
        try:
            row = ConventionRecord(id=doc["id"])
            write_document(row, doc)
            db.add(row)
            db.commit()
            return record_to_document(row)
        except SQLAlchemyError as e:
            self._fail(db, "create", doc.get("id"), e)
        finally:
            db.close()

    def get_by_id(self, convention_id: str) -> Optional[Document]:
        db = self.session_factory()
        try:
            row = db.query(ConventionRecord).filter(ConventionRecord.id == convention_id).first()
            return record_to_document(row) if row else None
        except SQLAlchemyError as e:
            self._fail(db, "load", convention_id, e)
        finally:
            db.close()

    def query_by_field(self, field: str, value: Any) -> List[Document]:
        column = QUERYABLE_FIELDS.get(field)
        superseded_role = SUPERSEDED_CODE_FIELDS.get(field)
        if column is None and superseded_role is None:
            raise ValueError(f"Field '{field}' is not queryable")
        db = self.session_factory()
        try:
            q = db.query(ConventionRecord)
            if superseded_role is not None:
                q = q.join(ConventionRecord.superseded_codes).filter(
                    SupersededCodeRecord.role == superseded_role,
                    func.upper(SupersededCodeRecord.code) == str(value).upper(),
                )
            elif isinstance(value, str):
                q = q.filter(func.lower(column) == value.lower())
            else:
                q = q.filter(column == value)
            return [record_to_document(row) for row in q.order_by(ConventionRecord.created_at).all()]
        except SQLAlchemyError as e:
            self._fail(db, "query", None, e)
        finally:
            db.close()

    def update_fields(self, convention_id, patch, append=None) -> Document:
        db = self.session_factory()
        try:
            row = (
                db.query(ConventionRecord)
                .filter(ConventionRecord.id == convention_id)
                .with_for_update()
                .first()
            )
            if row is None:
                raise NotFoundException(f"Convention {convention_id} not found")
            doc = apply_patch(record_to_document(row), patch, append)
            write_document(row, doc)
            db.commit()
            return doc
        except SQLAlchemyError as e:
            self._fail(db, "update", convention_id, e)
        finally:
            db.close()

    def append_to_list(self, convention_id: str, field: str, entry: Any) -> Document:
        return self.update_fields(convention_id, {}, append={field: [entry]})

    def ping(self) -> bool:
        db = self.session_factory()
        try:
            db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"[store] ping failed: {e}")
            return False
        finally:
            db.close()
