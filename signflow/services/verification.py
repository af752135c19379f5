"""Lookup of a convention from any verification value it carries.

Search order: the six signature codes, the attestation code, the codes a
re-sign replaced, then the two content fingerprints. The in-process mirror is
tried first; on a miss every field is queried against the store in parallel and
the first non-empty answer, in search order, wins.
"""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

from signflow.core.settings import settings
from signflow.schemas.convention import Convention, Role
from signflow.services.cache import ConventionCache
from signflow.services.document_store import DocumentStore

logger = logging.getLogger("signflow.verification")

SIGNATURE_CODE_FIELDS: List[str] = [f"signatures.{role.value}.code" for role in Role]
SUPERSEDED_CODE_FIELDS: List[str] = [f"signatures.{role.value}.previous_codes" for role in Role]
CODE_FIELDS: List[str] = SIGNATURE_CODE_FIELDS + ["attestation.code"] + SUPERSEDED_CODE_FIELDS
SEARCH_FIELDS: List[str] = CODE_FIELDS + ["certificate_hash", "attestation.hash"]


@dataclass
class VerificationMatch:
    convention: Convention
    field: str
    source: str  # "cache" or "store"

    @property
    def kind(self) -> str:
        if self.field in SIGNATURE_CODE_FIELDS or self.field in SUPERSEDED_CODE_FIELDS:
            return "signature"
        if self.field == "attestation.code":
            return "attestation"
        if self.field == "certificate_hash":
            return "certificate_hash"
        return "attestation_hash"

    @property
    def superseded(self) -> bool:
        return self.field in SUPERSEDED_CODE_FIELDS

    @property
    def role(self) -> Optional[Role]:
        if self.kind == "signature":
            return Role(self.field.split(".")[1])
        return None


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class VerificationResolver:
    def __init__(self, store: DocumentStore, cache: Optional[ConventionCache] = None, max_workers: Optional[int] = None):
        self.store = store
        self.cache = cache if cache is not None else ConventionCache()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.verification_workers,
            thread_name_prefix="verify",
        )

    def resolve(self, code: str) -> Optional[VerificationMatch]:
        """Return the convention that issued ``code``, or None if no document carries it."""
        code = normalize_code(code)
        if not code:
            return None
        match = self._search_cache(code)
        if match is None:
            match = self._search_store(code)
        if match is None:
            logger.info(f"[verification] No document for code={code}")
        else:
            logger.info(f"[verification] code={code} convention={match.convention.id} field={match.field} source={match.source}")
        return match

    def _search_cache(self, code: str) -> Optional[VerificationMatch]:
        hits = [(convention, field) for convention, field in self.cache.lookup(code) if field in SEARCH_FIELDS]
        if not hits:
            return None
        convention, field = min(hits, key=lambda hit: SEARCH_FIELDS.index(hit[1]))
        return VerificationMatch(convention, field, "cache")

    def _search_store(self, code: str) -> Optional[VerificationMatch]:
        futures = [(field, self._executor.submit(self.store.query_by_field, field, code)) for field in SEARCH_FIELDS]
        match = None
        for field, future in futures:
            hits = future.result()
            if hits and match is None:
                convention = Convention.model_validate(hits[0])
                self.cache.put(convention)
                match = VerificationMatch(convention, field, "store")
        return match

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
