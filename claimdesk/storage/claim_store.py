"""JSON-document backed relational store for claims and related tables."""

import copy
import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..models.claim import Claim, ClaimDocument, ClaimStatus, PolicyType, Role
from ..models.sections import SectionTemplate
from ..utils.errors import (
    ConcurrencyConflict,
    ReadError,
    ValidationError,
    handle_persistence_error,
)

logger = logging.getLogger(__name__)

TABLES = ("policy_types", "claims", "claim_documents", "section_templates", "user_roles")

POLICY_TYPE_COLUMNS = ("name", "description", "parent_id", "fields")
CLAIM_HEADER_COLUMNS = ("title", "description", "status", "claim_amount")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ClaimStore:
    """
    Table-style CRUD over a single JSON file.

    Provides:
    - insert / update / delete / select / get on named tables
    - claim number generation
    - merge_form_data: per-claim serialized read-merge-write with a version counter
    - section template listing and role lookup

    Every read returns deep copies; callers never hold references into
    the stored document.
    """

    def __init__(self, data_dir: str = "data", filename: str = "claimdesk.json"):
        """
        Initialize ClaimStore.

        Args:
            data_dir: Directory holding the database file
            filename: Database file name
        """
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / filename
        self._lock = threading.RLock()
        self._claim_locks: Dict[str, threading.Lock] = {}
        self._claim_locks_guard = threading.Lock()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._tables = self._load()

        logger.info(f"Initialized ClaimStore: path={self.path}")

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            return {table: [] for table in TABLES}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load database {self.path}: {str(e)}")
            raise ReadError.load_failed(str(self.path), e) from e
        return {table: list(raw.get(table) or []) for table in TABLES}

    def _save(self) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._tables, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def _commit(self, operation: str, rollback, claim_id: Optional[str] = None) -> None:
        try:
            self._save()
        except OSError as e:
            rollback()
            handle_persistence_error(e, operation, logger, claim_id=claim_id)

    def _table(self, table: str) -> List[Dict[str, Any]]:
        if table not in self._tables:
            raise ValidationError.invalid(f"Unknown table '{table}'", field="table")
        return self._tables[table]

    def _find(self, table: str, record_id: str) -> Dict[str, Any]:
        for row in self._table(table):
            if row.get("id") == record_id:
                return row
        raise ReadError.not_found(table, record_id)

    def _claim_lock(self, claim_id: str) -> threading.Lock:
        with self._claim_locks_guard:
            lock = self._claim_locks.get(claim_id)
            if lock is None:
                lock = threading.Lock()
                self._claim_locks[claim_id] = lock
            return lock

    # Generic table operations

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row, generating id and timestamps when absent."""
        with self._lock:
            record = copy.deepcopy(row)
            record.setdefault("id", str(uuid.uuid4()))
            record.setdefault("created_at", _now_iso())
            record.setdefault("updated_at", record["created_at"])
            rows = self._table(table)
            rows.append(record)
            self._commit(f"insert into {table}", rollback=lambda: rows.remove(record))
            logger.debug(f"Inserted {table} row {record['id']}")
            return copy.deepcopy(record)

    def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update to one row."""
        with self._lock:
            row = self._find(table, record_id)
            before = copy.deepcopy(row)

            def rollback():
                row.clear()
                row.update(before)

            row.update(copy.deepcopy(changes))
            row["id"] = record_id
            row["updated_at"] = _now_iso()
            self._commit(
                f"update {table}",
                rollback=rollback,
                claim_id=record_id if table == "claims" else None,
            )
            return copy.deepcopy(row)

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            rows = self._table(table)
            remaining = [row for row in rows if row.get("id") != record_id]
            if len(remaining) == len(rows):
                return False
            self._tables[table] = remaining
            self._commit(f"delete from {table}", rollback=lambda: self._tables.__setitem__(table, rows))
            logger.info(f"Deleted {table} row {record_id}")
            return True

    def select(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        """Return rows whose columns equal every given filter value."""
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._table(table)
                if all(row.get(key) == value for key, value in filters.items())
            ]

    def get(self, table: str, record_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._find(table, record_id))

    # Policy types

    def get_policy_type(self, policy_type_id: str) -> PolicyType:
        return PolicyType.from_row(self.get("policy_types", policy_type_id))

    def list_policy_types(self) -> List[PolicyType]:
        rows = sorted(self.select("policy_types"), key=lambda r: (r.get("name") or "").lower())
        return [PolicyType.from_row(row) for row in rows]

    def create_policy_type(
        self,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[str] = None,
        fields: Optional[List[Dict[str, Any]]] = None,
    ) -> PolicyType:
        if not (name or "").strip():
            raise ValidationError.required("name", "Name")
        if parent_id:
            self.get_policy_type(parent_id)
        row = self.insert("policy_types", {
            "name": name.strip(),
            "description": description,
            "parent_id": parent_id,
            "fields": list(fields or []),
        })
        logger.info(f"Created policy type '{row['name']}' ({row['id']})")
        return PolicyType.from_row(row)

    def update_policy_type(self, policy_type_id: str, changes: Dict[str, Any]) -> PolicyType:
        allowed = {k: v for k, v in changes.items() if k in POLICY_TYPE_COLUMNS}
        if "name" in allowed and not (allowed["name"] or "").strip():
            raise ValidationError.required("name", "Name")
        return PolicyType.from_row(self.update("policy_types", policy_type_id, allowed))

    def delete_policy_type(self, policy_type_id: str) -> bool:
        if self.select("claims", policy_type_id=policy_type_id):
            raise ValidationError.invalid(
                "Policy type is used by existing claims and cannot be deleted", field="policy_type_id"
            )
        return self.delete("policy_types", policy_type_id)

    # Claims

    def next_claim_number(self, year: Optional[int] = None) -> str:
        """Return CLM<year><seq> with seq one past the highest used this year."""
        year = year or datetime.now(timezone.utc).year
        prefix = f"CLM{year}"
        with self._lock:
            highest = 0
            for row in self._tables["claims"]:
                number = row.get("claim_number") or ""
                suffix = number[len(prefix):]
                if number.startswith(prefix) and suffix.isdigit():
                    highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:04d}"

    def create_claim(
        self,
        policy_type_id: str,
        title: str,
        user_id: Optional[str] = None,
        description: Optional[str] = None,
        claim_amount: Optional[float] = None,
        form_data: Optional[Dict[str, Any]] = None,
        claim_number: Optional[str] = None,
    ) -> Claim:
        """
        Create a claim in draft status.

        Raises:
            ValidationError: If the title is blank
            ReadError: If the policy type does not exist
        """
        if not (title or "").strip():
            raise ValidationError.required("title", "Title")
        policy_type = self.get_policy_type(policy_type_id)

        with self._lock:
            row = self.insert("claims", {
                "user_id": user_id,
                "policy_type_id": policy_type_id,
                "claim_number": claim_number or self.next_claim_number(),
                "title": title.strip(),
                "description": description,
                "status": ClaimStatus.DRAFT.value,
                "claim_amount": claim_amount,
                "form_data": form_data or {},
                "version": 0,
            })
        logger.info(f"Created claim {row['claim_number']} ({row['id']})")
        return Claim.from_row(row, policy_type_name=policy_type.name)

    def get_claim(self, claim_id: str) -> Claim:
        row = self.get("claims", claim_id)
        return Claim.from_row(row, policy_type_name=self._policy_type_name(row.get("policy_type_id")))

    def list_claims(self, status: Optional[str] = None) -> List[Claim]:
        rows = self.select("claims", status=status) if status else self.select("claims")
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return [
            Claim.from_row(row, policy_type_name=self._policy_type_name(row.get("policy_type_id")))
            for row in rows
        ]

    def update_claim(self, claim_id: str, changes: Dict[str, Any]) -> Claim:
        """
        Update the claim header columns (title, description, status, amount).

        Raises:
            ValidationError: For a blank title or an unknown status
        """
        allowed = {k: v for k, v in changes.items() if k in CLAIM_HEADER_COLUMNS}
        if "title" in allowed:
            if not (allowed["title"] or "").strip():
                raise ValidationError.required("title", "Title")
            allowed["title"] = allowed["title"].strip()
        if "status" in allowed:
            try:
                allowed["status"] = ClaimStatus(allowed["status"]).value
            except ValueError as e:
                raise ValidationError.invalid(
                    f"Unknown claim status '{allowed['status']}'", field="status"
                ) from e
        with self._claim_lock(claim_id):
            row = self.update("claims", claim_id, allowed)
        return Claim.from_row(row, policy_type_name=self._policy_type_name(row.get("policy_type_id")))

    def delete_claim(self, claim_id: str) -> bool:
        with self._lock:
            for document in self.select("claim_documents", claim_id=claim_id):
                self.delete("claim_documents", document["id"])
            deleted = self.delete("claims", claim_id)
        with self._claim_locks_guard:
            self._claim_locks.pop(claim_id, None)
        return deleted

    def _policy_type_name(self, policy_type_id: Optional[str]) -> Optional[str]:
        if not policy_type_id:
            return None
        rows = self.select("policy_types", id=policy_type_id)
        return rows[0].get("name") if rows else None

    def merge_form_data(
        self,
        claim_id: str,
        patch: Dict[str, Any],
        remove_keys: Iterable[str] = (),
        expected_version: Optional[int] = None,
    ) -> Claim:
        """
        Atomically merge a patch into one claim's form_data.

        The read, merge and write happen under a per-claim lock, so two
        commits of different keys on the same claim both survive.

        Args:
            claim_id: Claim to update
            patch: Keys to set (top-level replace)
            remove_keys: Keys to drop after applying the patch
            expected_version: When given, the write is refused unless the
                stored version still matches

        Returns:
            The updated Claim

        Raises:
            ConcurrencyConflict: If expected_version is stale
            ReadError: If the claim does not exist
            PersistenceError: If the write fails
        """
        with self._claim_lock(claim_id):
            with self._lock:
                row = self._find("claims", claim_id)
                current_version = int(row.get("version", 0))
                if expected_version is not None and expected_version != current_version:
                    logger.warning(
                        f"Stale form_data write for claim {claim_id}: "
                        f"expected v{expected_version}, found v{current_version}"
                    )
                    raise ConcurrencyConflict.stale_version(claim_id, expected_version, current_version)

                previous = (row.get("form_data") or {}, current_version, row.get("updated_at"))
                merged = dict(previous[0])
                merged.update(copy.deepcopy(patch))
                for key in remove_keys:
                    merged.pop(key, None)
                row["form_data"] = merged
                row["version"] = current_version + 1
                row["updated_at"] = _now_iso()
                try:
                    self._save()
                except OSError as e:
                    row["form_data"], row["version"], row["updated_at"] = previous
                    handle_persistence_error(e, "save claim form data", logger, claim_id=claim_id)

                logger.debug(
                    f"Merged {len(patch)} keys into claim {claim_id} form_data (v{row['version']})"
                )
                claim_row = copy.deepcopy(row)
        return Claim.from_row(
            claim_row, policy_type_name=self._policy_type_name(claim_row.get("policy_type_id"))
        )

    # Documents

    def add_document(self, document: Dict[str, Any]) -> ClaimDocument:
        document = dict(document)
        document.setdefault("is_selected", True)
        return ClaimDocument.from_row(self.insert("claim_documents", document))

    def list_documents(self, claim_id: str) -> List[ClaimDocument]:
        rows = self.select("claim_documents", claim_id=claim_id)
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return [ClaimDocument.from_row(row) for row in rows]

    def get_document(self, document_id: str) -> ClaimDocument:
        return ClaimDocument.from_row(self.get("claim_documents", document_id))

    def set_document_selected(self, document_id: str, selected: bool) -> ClaimDocument:
        return ClaimDocument.from_row(
            self.update("claim_documents", document_id, {"is_selected": bool(selected)})
        )

    # Section templates

    def list_section_templates(self, policy_type_id: Optional[str] = None) -> List[SectionTemplate]:
        """
        List templates usable for a policy type.

        Templates are shared per policy family: the policy type's parent (or
        the type itself when it has none) is matched, and templates with no
        family apply everywhere. Default templates come first, then by name.
        """
        family_id = None
        if policy_type_id:
            policy_type = self.get_policy_type(policy_type_id)
            family_id = policy_type.parent_id or policy_type.id

        rows = [
            row for row in self.select("section_templates")
            if row.get("parent_policy_type_id") in (None, family_id)
        ]
        rows.sort(key=lambda r: (not r.get("is_default", False), (r.get("name") or "").lower()))
        return [SectionTemplate.from_dict(row) for row in rows]

    def get_section_template(self, template_id: str) -> SectionTemplate:
        return SectionTemplate.from_dict(self.get("section_templates", template_id))

    # Roles

    def get_role(self, user_id: Optional[str]) -> Role:
        if not user_id:
            return Role.USER
        rows = self.select("user_roles", user_id=user_id)
        if rows and rows[0].get("role") == Role.ADMIN.value:
            return Role.ADMIN
        return Role.USER

    def set_role(self, user_id: str, role: Role) -> None:
        with self._lock:
            rows = self.select("user_roles", user_id=user_id)
            if rows:
                self.update("user_roles", rows[0]["id"], {"role": role.value})
            else:
                self.insert("user_roles", {"user_id": user_id, "role": role.value})
