"""Claim, policy type and document data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ClaimStatus(Enum):
    """Lifecycle states of a claim."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"

    @property
    def display(self) -> str:
        return self.value.replace("_", " ")


class Role(Enum):
    """Binary role used for access checks."""

    ADMIN = "admin"
    USER = "user"


@dataclass
class PolicyType:
    """
    A kind of insurance policy claims are filed against.

    Attributes:
        id: Policy type identifier
        name: Display name, also used to select specialised fields
        description: Optional description
        parent_id: Optional parent policy type (templates are shared per family)
        fields: Extra field definitions configured by administrators
    """
    id: str
    name: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    fields: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PolicyType":
        return cls(
            id=row["id"],
            name=row.get("name", ""),
            description=row.get("description"),
            parent_id=row.get("parent_id"),
            fields=list(row.get("fields") or []),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass
class Claim:
    """
    One insurance claim being processed.

    Attributes:
        id: Generated identifier
        claim_number: Human-readable number (CLM<year><seq>)
        policy_type_id: Reference to the policy type
        title: Short title
        status: Lifecycle state
        claim_amount: Claimed amount, if known
        form_data: Open map of dynamic field values and metadata side-tables
        version: Counter bumped on every form_data write
        policy_type_name: Denormalised policy type name, when joined
    """
    id: str
    claim_number: str
    policy_type_id: str
    title: str
    user_id: Optional[str] = None
    description: Optional[str] = None
    status: ClaimStatus = ClaimStatus.DRAFT
    claim_amount: Optional[float] = None
    form_data: Dict[str, Any] = field(default_factory=dict)
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    policy_type_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], policy_type_name: Optional[str] = None) -> "Claim":
        amount = row.get("claim_amount")
        return cls(
            id=row["id"],
            claim_number=row.get("claim_number", ""),
            policy_type_id=row.get("policy_type_id", ""),
            title=row.get("title", ""),
            user_id=row.get("user_id"),
            description=row.get("description"),
            status=ClaimStatus(row.get("status") or ClaimStatus.DRAFT.value),
            claim_amount=float(amount) if amount is not None else None,
            form_data=dict(row.get("form_data") or {}),
            version=int(row.get("version", 0)),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            policy_type_name=policy_type_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_number": self.claim_number,
            "policy_type_id": self.policy_type_id,
            "policy_type_name": self.policy_type_name,
            "title": self.title,
            "user_id": self.user_id,
            "description": self.description,
            "status": self.status.value,
            "claim_amount": self.claim_amount,
            "form_data": self.form_data,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class ClaimDocument:
    """
    An uploaded supporting document.

    Attributes:
        id: Document identifier
        claim_id: Owning claim
        file_name: Original file name
        file_path: Storage path or URL
        file_type: MIME type
        file_size: Size in bytes
        uploaded_by: Uploading user
        created_at: ISO upload timestamp
        field_label: Label of the requirement the document satisfies
        is_selected: Whether the document is included in reports
    """
    id: str
    claim_id: str
    file_name: str
    file_path: str
    file_type: str
    file_size: int
    uploaded_by: str
    created_at: str
    field_label: Optional[str] = None
    is_selected: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ClaimDocument":
        return cls(
            id=row["id"],
            claim_id=row["claim_id"],
            file_name=row.get("file_name", ""),
            file_path=row.get("file_path", ""),
            file_type=row.get("file_type", "application/octet-stream"),
            file_size=int(row.get("file_size", 0)),
            uploaded_by=row.get("uploaded_by", ""),
            created_at=row.get("created_at", ""),
            field_label=row.get("field_label"),
            is_selected=bool(row.get("is_selected", True)),
        )
