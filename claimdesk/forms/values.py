"""
Field-value store: one claim's form_data plus its metadata side-tables.

form_data layout:
    <field name>                 -> stored value (JSON)
    custom_fields_metadata       -> list of custom field descriptors
    hidden_fields                -> list of hidden field names
    field_labels                 -> {field name: label override}
    dynamic_sections_metadata    -> list of sections (owned by the section organizer)
    <section id>_images          -> 6 image URLs ("" = empty slot)
    assessment                   -> assessment worksheet (owned by the worksheet)
    fee_bill                     -> survey fee invoice (owned by the fee bill worksheet)
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from ..models.claim import Claim
from ..models.fields import (
    FieldDescriptor,
    FieldKind,
    FieldValue,
    coerce_value,
    is_empty,
    serialize_value,
)
from ..storage.claim_store import ClaimStore
from ..utils.errors import ClaimsDeskError, ConcurrencyConflict, ValidationError
from .autosave import SaveScheduler
from .registry import (
    DEFAULT_SECTION_IDS,
    default_section_fields,
    get_policy_detail_descriptors,
)

logger = logging.getLogger(__name__)

CUSTOM_PREFIX = "custom_"
CUSTOM_FIELDS_KEY = "custom_fields_metadata"
HIDDEN_FIELDS_KEY = "hidden_fields"
FIELD_LABELS_KEY = "field_labels"
SECTIONS_KEY = "dynamic_sections_metadata"
ASSESSMENT_KEY = "assessment"
FEE_BILL_KEY = "fee_bill"
IMAGES_SUFFIX = "_images"
IMAGE_SLOTS = 6

METADATA_KEYS = {
    CUSTOM_FIELDS_KEY, HIDDEN_FIELDS_KEY, FIELD_LABELS_KEY, SECTIONS_KEY, ASSESSMENT_KEY, FEE_BILL_KEY,
}


def is_metadata_key(key: str) -> bool:
    return key in METADATA_KEYS or key.endswith(IMAGES_SUFFIX)


def images_key(section_id: str) -> str:
    return f"{section_id}{IMAGES_SUFFIX}"


def empty_slots() -> List[str]:
    return [""] * IMAGE_SLOTS


def normalize_slots(raw: Any) -> List[str]:
    """Pad or cut a stored image list to exactly 6 string slots."""
    slots = [str(url or "") for url in (raw if isinstance(raw, list) else [])][:IMAGE_SLOTS]
    return slots + [""] * (IMAGE_SLOTS - len(slots))


@dataclass
class Notice:
    """A user-visible notification produced by an editing action."""
    level: str  # "success" | "error" | "info"
    message: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, str]:
        return {"level": self.level, "message": self.message, "created_at": self.created_at}


@dataclass
class Draft:
    """The logical parts deserialized from one stored form_data document."""
    values: Dict[str, Any]
    custom_descriptors: List[FieldDescriptor]
    hidden_field_names: Set[str]
    label_overrides: Dict[str, str]
    section_images: Dict[str, List[str]]


def migrate_custom_descriptors(raw: Iterable[Dict[str, Any]]) -> List[FieldDescriptor]:
    """
    Deserialize stored custom descriptors, filling in a missing section.

    Older claims saved custom fields without a section; those are spread
    round-robin over the four default sections by their stored position.
    """
    migrated = []
    for index, entry in enumerate(raw or []):
        if not isinstance(entry, dict) or not entry.get("name"):
            logger.warning(f"Skipping malformed custom field metadata at index {index}")
            continue
        descriptor = FieldDescriptor.from_dict(entry)
        descriptor.is_custom = True
        if not descriptor.section_id:
            descriptor.section_id = DEFAULT_SECTION_IDS[index % len(DEFAULT_SECTION_IDS)]
        migrated.append(descriptor)
    return migrated


def load_draft(form_data: Optional[Dict[str, Any]]) -> Draft:
    """
    Split a stored form_data document into values and metadata side-tables.

    Args:
        form_data: The claim's form_data (may be None)

    Returns:
        Draft with raw stored values and fully populated custom descriptors
    """
    form_data = form_data or {}
    hidden = form_data.get(HIDDEN_FIELDS_KEY)
    labels = form_data.get(FIELD_LABELS_KEY)

    return Draft(
        values={k: v for k, v in form_data.items() if not is_metadata_key(k)},
        custom_descriptors=migrate_custom_descriptors(form_data.get(CUSTOM_FIELDS_KEY) or []),
        hidden_field_names=set(hidden) if isinstance(hidden, list) else set(),
        label_overrides=dict(labels) if isinstance(labels, dict) else {},
        section_images={
            k[: -len(IMAGES_SUFFIX)]: normalize_slots(v)
            for k, v in form_data.items()
            if k.endswith(IMAGES_SUFFIX)
        },
    )


def missing_required(values: Dict[str, Any], descriptors: Iterable[FieldDescriptor]) -> List[FieldDescriptor]:
    """Return the required descriptors whose value is empty."""
    return [d for d in descriptors if d.required and is_empty(values.get(d.name))]


class FieldValueStore:
    """
    Draft state for one claim's dynamic fields.

    Values are held typed in memory and serialized at the storage boundary.
    Each mutation is applied locally first and then persisted through a
    read-merge-write; a failed write adds an error Notice and keeps the
    local change.
    """

    def __init__(
        self,
        store: ClaimStore,
        claim: Claim,
        scheduler: Optional[SaveScheduler] = None,
        autosave_delay: float = 2.0,
    ):
        """
        Initialize the store from a loaded claim.

        Args:
            store: Backing ClaimStore
            claim: Claim whose form_data is edited
            scheduler: Optional debounce scheduler for standard-field autosave
            autosave_delay: Debounce delay for standard fields in seconds
        """
        self.store = store
        self.claim_id = claim.id
        self.policy_type_name = claim.policy_type_name
        self.scheduler = scheduler
        self.autosave_delay = autosave_delay
        self.notices: List[Notice] = []
        self.pending: Set[str] = set()
        self.version = claim.version

        self._standard: Dict[str, FieldDescriptor] = {}
        for section_fields in default_section_fields(claim.policy_type_name).values():
            for descriptor in section_fields:
                self._standard[descriptor.name] = descriptor
        for descriptor in get_policy_detail_descriptors():
            self._standard[descriptor.name] = descriptor
        self._extra: Dict[str, FieldDescriptor] = {}

        self._apply_draft(load_draft(claim.form_data))

    def _apply_draft(self, draft: Draft) -> None:
        self.custom_descriptors: List[FieldDescriptor] = draft.custom_descriptors
        self.hidden_fields: Set[str] = draft.hidden_field_names
        self.label_overrides: Dict[str, str] = draft.label_overrides
        self.section_images: Dict[str, List[str]] = draft.section_images
        self.persisted: Dict[str, Any] = dict(draft.values)
        self.values: Dict[str, FieldValue] = {
            name: self._coerce(name, raw) for name, raw in draft.values.items()
        }

    def reload(self) -> None:
        """Discard local state and re-read the claim."""
        claim = self.store.get_claim(self.claim_id)
        self.pending.clear()
        self.version = claim.version
        self._apply_draft(load_draft(claim.form_data))

    # Descriptor lookup

    def register_descriptors(self, descriptors: Iterable[FieldDescriptor]) -> None:
        """Make section-owned descriptors (e.g. from templates) known for typing and labels."""
        for descriptor in descriptors:
            if descriptor.name in self._standard:
                continue
            self._extra[descriptor.name] = descriptor
            if descriptor.name in self.values:
                self.values[descriptor.name] = self._coerce(descriptor.name, self.values[descriptor.name])

    def descriptor(self, name: str) -> Optional[FieldDescriptor]:
        for descriptor in self.custom_descriptors:
            if descriptor.name == name:
                return descriptor
        return self._standard.get(name) or self._extra.get(name)

    def kind_of(self, name: str) -> FieldKind:
        descriptor = self.descriptor(name)
        return descriptor.kind if descriptor else FieldKind.TEXT

    def _coerce(self, name: str, raw: Any) -> FieldValue:
        # Values with no descriptor (orphans of removed sections) stay as stored
        descriptor = self.descriptor(name)
        return coerce_value(descriptor.kind, raw) if descriptor else raw

    def _serialize(self, name: str, value: Any) -> Any:
        descriptor = self.descriptor(name)
        return serialize_value(descriptor.kind, value) if descriptor else value

    def known_names(self) -> Set[str]:
        return set(self._standard) | set(self._extra) | {d.name for d in self.custom_descriptors}

    def label_for(self, name: str) -> str:
        if name in self.label_overrides:
            return self.label_overrides[name]
        descriptor = self.descriptor(name)
        return descriptor.label if descriptor else name

    def custom_in_section(self, section_id: str) -> List[FieldDescriptor]:
        return [d for d in self.custom_descriptors if d.section_id == section_id]

    # Persistence plumbing

    def metadata(self) -> Dict[str, Any]:
        """Current metadata side-tables in their stored form."""
        return {
            CUSTOM_FIELDS_KEY: [d.to_dict() for d in self.custom_descriptors],
            HIDDEN_FIELDS_KEY: sorted(self.hidden_fields),
            FIELD_LABELS_KEY: dict(self.label_overrides),
        }

    def notify(self, level: str, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self.notices.append(notice)
        return notice

    def drain_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    def persist(
        self,
        patch: Dict[str, Any],
        failure_message: str,
        remove_keys: Iterable[str] = (),
        success_message: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Merge a patch into the stored form_data.

        Write failures become an error Notice and return False. A stale
        expected_version is raised to the caller as ConcurrencyConflict.
        """
        try:
            claim = self.store.merge_form_data(
                self.claim_id, patch, remove_keys=remove_keys, expected_version=expected_version
            )
        except ConcurrencyConflict:
            raise
        except ClaimsDeskError as e:
            logger.warning(f"{failure_message} for claim {self.claim_id}: {str(e)}")
            self.notify("error", failure_message)
            return False
        self.version = claim.version
        if success_message:
            self.notify("success", success_message)
        return True

    def _serialized(self, name: str) -> Any:
        return self._serialize(name, self.values.get(name))

    def _differs_from_persisted(self, name: str) -> bool:
        stored = self._serialize(name, self.persisted.get(name))
        return self._serialized(name) != stored

    # Field values

    def get_value(self, name: str) -> FieldValue:
        return self.values.get(name)

    def serialized_values(self) -> Dict[str, Any]:
        """Current draft values in their JSON storage form."""
        return {name: self._serialized(name) for name in self.values}

    def patch_field(self, name: str, value: Any) -> bool:
        """
        Set a field's draft value.

        Marks the field pending when the value differs from the persisted
        one (and clears it when it matches again). Standard fields arm the
        standard autosave timer; custom fields wait for commit_field.

        Returns:
            Whether the field is now pending
        """
        self.values[name] = self._coerce(name, value)
        if self._differs_from_persisted(name):
            self.pending.add(name)
        else:
            self.pending.discard(name)

        if self.scheduler and not name.startswith(CUSTOM_PREFIX):
            self.scheduler.schedule("standard", self.autosave, self.autosave_delay)
        return name in self.pending

    def commit_field(self, name: str, expected_version: Optional[int] = None) -> bool:
        """
        Persist one field's value together with the metadata side-tables.

        Other fields' stored values are preserved by the store-side merge.
        """
        value = self._serialized(name)
        patch = {name: value}
        patch.update(self.metadata())
        if not self.persist(
            patch,
            "Failed to save field",
            success_message="Claim updated successfully!",
            expected_version=expected_version,
        ):
            return False
        self.persisted[name] = value
        self.pending.discard(name)
        return True

    def _standard_patch(self) -> Dict[str, Any]:
        return {
            name: self._serialized(name)
            for name in self.values
            if not name.startswith(CUSTOM_PREFIX)
        }

    def autosave(self) -> bool:
        """Debounced save of standard field values; silent on success."""
        patch = self._standard_patch()
        patch.update(self.metadata())
        if not self.persist(patch, "Failed to autosave changes"):
            return False
        for name in patch:
            if not is_metadata_key(name):
                self.persisted[name] = patch[name]
                self.pending.discard(name)
        return True

    def commit_all(self, values: Optional[Dict[str, Any]] = None, expected_version: Optional[int] = None) -> bool:
        """
        Persist the whole form.

        Pending custom fields are committed first; then every non-custom
        value is written with the metadata side-tables and image slots.
        Stored custom values are left as they are.

        Args:
            values: Optional field values to apply before saving
            expected_version: Version the caller last read; the first write
                raises ConcurrencyConflict if the claim changed since

        Raises:
            ConcurrencyConflict: If expected_version is stale
        """
        for name, value in (values or {}).items():
            self.values[name] = self._coerce(name, value)

        expected = expected_version
        for name in sorted(n for n in self.pending if n.startswith(CUSTOM_PREFIX)):
            if self.commit_field(name, expected_version=expected) and expected is not None:
                expected = self.version

        if self.scheduler:
            self.scheduler.cancel("standard")

        patch = self._standard_patch()
        patch.update(self.metadata())
        for section_id, slots in self.section_images.items():
            patch[images_key(section_id)] = list(slots)
        if not self.persist(patch, "Failed to update additional information", expected_version=expected):
            return False
        for name in self.values:
            if not name.startswith(CUSTOM_PREFIX):
                self.persisted[name] = patch[name]
                self.pending.discard(name)
        return True

    # Metadata mutations

    def hide_field(self, name: str) -> bool:
        """Exclude a field from forms and reports; its stored value is kept."""
        self.hidden_fields.add(name)
        return self.persist(
            {HIDDEN_FIELDS_KEY: sorted(self.hidden_fields), CUSTOM_FIELDS_KEY: self.metadata()[CUSTOM_FIELDS_KEY]},
            "Failed to save field removal",
        )

    def _new_custom_name(self) -> str:
        taken = self.known_names() | set(self.values)
        stamp = int(time.time() * 1000)
        while f"{CUSTOM_PREFIX}{stamp}" in taken:
            stamp += 1
        return f"{CUSTOM_PREFIX}{stamp}"

    def add_custom_field(
        self,
        section_id: str,
        label: str = "New Field",
        kind: FieldKind = FieldKind.TEXT,
        name: Optional[str] = None,
        options: Optional[List[str]] = None,
    ) -> Optional[FieldDescriptor]:
        """
        Create a custom field in a section and persist the descriptor list.

        Returns:
            The new descriptor, or None when the input was rejected
        """
        try:
            if not (section_id or "").strip():
                raise ValidationError.required("section_id", "Section")
            if name is not None and (not name.startswith(CUSTOM_PREFIX) or name in self.known_names()):
                raise ValidationError.invalid(
                    f"Custom field name '{name}' must start with '{CUSTOM_PREFIX}' and be unique",
                    field="name",
                )
        except ValidationError as e:
            logger.warning(f"Rejected custom field for claim {self.claim_id}: {str(e)}")
            self.notify("error", e.context.message)
            return None

        descriptor = FieldDescriptor(
            name=name or self._new_custom_name(),
            label=label or "New Field",
            kind=kind,
            options=list(options or []),
            is_custom=True,
            section_id=section_id,
        )
        self.custom_descriptors.append(descriptor)
        logger.info(f"Added custom field {descriptor.name} to {section_id} on claim {self.claim_id}")
        self.persist({CUSTOM_FIELDS_KEY: self.metadata()[CUSTOM_FIELDS_KEY]}, "Failed to save field")
        return descriptor

    def update_custom_field(
        self,
        name: str,
        label: Optional[str] = None,
        kind: Optional[FieldKind] = None,
        options: Optional[List[str]] = None,
    ) -> bool:
        """Change a custom field's definition locally; saved with its next commit."""
        descriptor = self.descriptor(name)
        if descriptor is None or not descriptor.is_custom:
            self.notify("error", f"Unknown custom field '{name}'")
            return False
        if label is not None:
            descriptor.label = label
        if kind is not None:
            descriptor.kind = kind
            if name in self.values:
                self.values[name] = coerce_value(kind, self.values[name])
        if options is not None:
            descriptor.options = list(options)
        if label is None:
            self.pending.add(name)
        return True

    def remove_custom_field(self, name: str) -> bool:
        """Delete a custom field's descriptor and its stored value."""
        before = len(self.custom_descriptors)
        self.custom_descriptors = [d for d in self.custom_descriptors if d.name != name]
        if len(self.custom_descriptors) == before:
            self.notify("error", f"Unknown custom field '{name}'")
            return False
        self.values.pop(name, None)
        self.persisted.pop(name, None)
        self.pending.discard(name)
        return self.persist(
            {CUSTOM_FIELDS_KEY: self.metadata()[CUSTOM_FIELDS_KEY]},
            "Failed to remove field",
            remove_keys=[name],
        )

    def relabel_field(self, name: str, label: str) -> bool:
        """Override a field's display label without touching its descriptor."""
        if not (label or "").strip():
            self.notify("error", "Label cannot be empty")
            return False
        self.label_overrides[name] = label.strip()
        try:
            stored = self.store.get_claim(self.claim_id).form_data.get(FIELD_LABELS_KEY)
        except ClaimsDeskError as e:
            logger.warning(f"Could not read stored labels for claim {self.claim_id}: {str(e)}")
            stored = None
        labels = dict(stored) if isinstance(stored, dict) else {}
        labels.update(self.label_overrides)
        return self.persist(
            {FIELD_LABELS_KEY: labels, CUSTOM_FIELDS_KEY: self.metadata()[CUSTOM_FIELDS_KEY]},
            "Failed to save label",
            success_message="Label updated",
        )

    # Section image slots

    def images_for(self, section_id: str) -> List[str]:
        return list(self.section_images.get(section_id) or empty_slots())

    def _check_slot(self, slot: int) -> bool:
        if not 0 <= slot < IMAGE_SLOTS:
            self.notify("error", f"Image slot must be between 0 and {IMAGE_SLOTS - 1}")
            return False
        return True

    def set_section_image(self, section_id: str, slot: int, url: str) -> bool:
        if not self._check_slot(slot):
            return False
        slots = self.images_for(section_id)
        slots[slot] = url
        self.section_images[section_id] = slots
        return self.persist({images_key(section_id): slots}, "Failed to save image")

    def clear_section_image(self, section_id: str, slot: int) -> bool:
        return self.set_section_image(section_id, slot, "")
