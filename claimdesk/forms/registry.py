"""
Field registry: the standard field catalog per policy type.

Descriptors are plain data; callers get fresh copies so that mutating a
returned list never leaks into the catalog.
"""

import copy
from typing import Dict, List, Optional, Tuple

from ..models.fields import FieldDescriptor, FieldKind
from ..models.sections import ColorTag

TEXT = FieldKind.TEXT
NUMBER = FieldKind.NUMBER
DATE = FieldKind.DATE
TEXTAREA = FieldKind.MULTILINE_TEXT
SELECT = FieldKind.SINGLE_SELECT

YES_NO = ["Yes", "No"]


def _field(name: str, label: str, kind: FieldKind = TEXT, options: Optional[List[str]] = None,
           required: bool = False) -> FieldDescriptor:
    return FieldDescriptor(name=name, label=label, kind=kind, required=required,
                           options=list(options or []))


COMMON_FIELDS: Tuple[FieldDescriptor, ...] = (
    # Basic information
    _field("consigner_name", "Name of Consigner of Goods (Exporter)"),
    _field("consignee_name", "Name of Consignee of Goods (Importer)"),
    _field("applicant_survey", "Applicant of Survey"),
    _field("underwriter_name", "Name of Underwriter / Insurer"),
    _field("cha_name", "Name of CHA / Clearing Agent / Forwarder"),
    _field("certificate_no", "Certificate No (if Applicable)"),
    _field("endorsement_no", "Endorsement No (if Any)"),
    _field("invoice_no", "Invoice Details Invoice No"),
    _field("invoice_date", "Invoice Details Invoice Date", DATE),
    _field("invoice_value", "Invoice Details Invoice Value", NUMBER),
    _field("invoice_pkg_count", "Invoice Details No of PKG", NUMBER),
    _field("invoice_gross_wt", "Invoice Details Gross WT"),
    _field("invoice_net_wt", "Invoice Details Net WT"),
    # Survey and loss
    _field("goods_description", "Description of Goods", TEXTAREA),
    _field("intimation_date", "Date of Intimation of Survey", DATE),
    _field("survey_date_place", "Date and Place of Survey", TEXTAREA),
    _field("external_condition_review",
           "External Condition Upon Reviewing the Consignment as per Consignee", TEXTAREA),
    _field("packing_nature", "Nature of Packing", TEXTAREA),
    _field("packing_condition", "External Condition of Packing at the Time of Survey", TEXTAREA),
    _field("damage_description", "Description of Loss / Damage", TEXTAREA),
    _field("loss_cause", "Cause of Loss", TEXTAREA),
    _field("joint_survey", "Was Any Joint Survey Held", TEXTAREA),
    _field("consignee_notice",
           "Has Consignee Given Notice of Loss / Damage to or Made Claim Against Carriers?",
           TEXTAREA),
    # Transportation
    _field("transporter_name", "Name of the Transporter"),
    _field("vehicle_number", "Vehicle Number"),
    _field("lr_date_issuance", "LR & Date of Issuance"),
    _field("consignment_note", "Consignment Note No / Docket No & Date"),
    _field("delivery_challan", "Delivery Challan No"),
    _field("dispatch_condition",
           "External Condition While Dispatching the Consignment from Port / CFS / Warehouse",
           TEXTAREA),
    # Report
    _field("survey_address", "Address of Survey", TEXTAREA),
    _field("number_packages", "Number of Packages", SELECT,
           ["BULK/RM", "1-10", "11-50", "51-100", "100+"]),
    _field("packing_contents", "Whats Inside Packing Consignment", TEXTAREA),
    _field("content_industry_use", "Use of Content Industry it is Utilised in", SELECT,
           ["Manufacturing", "Construction", "Electronics", "Textiles", "Automotive",
            "Food Processing", "Other"]),
    _field("arrival_details",
           "How Did it Arrive to the Premises Spot of Survey Mention Container No "
           "and or Vehicle No if Applicable", SELECT,
           ["By Road Transport", "By Sea Container", "By Air Cargo", "By Rail", "Other"]),
    _field("external_condition_tag", "External Condition Tag", TEXTAREA),
)

MARINE_FIELDS: Tuple[FieldDescriptor, ...] = (
    _field("vessel_name", "Vessel Name"),
    _field("port_loading", "Port of Loading"),
    _field("port_discharge", "Port of Discharge"),
    _field("bl_number", "Bill of Lading Number"),
)

FIRE_FIELDS: Tuple[FieldDescriptor, ...] = (
    _field("building_type", "Building Type", SELECT,
           ["Residential", "Commercial", "Industrial", "Warehouse"]),
    _field("fire_brigade_called", "Was Fire Brigade Called?", SELECT, YES_NO),
    _field("sprinkler_system", "Sprinkler System Present?", SELECT, YES_NO),
)

# (keywords, extra fields); first branch whose keyword occurs in the name wins
SPECIALIZATIONS: Tuple[Tuple[Tuple[str, ...], Tuple[FieldDescriptor, ...]], ...] = (
    (("marine", "cargo"), MARINE_FIELDS),
    (("fire", "property"), FIRE_FIELDS),
)

POLICY_DETAIL_FIELDS: Tuple[FieldDescriptor, ...] = (
    _field("registration_id", "Registration ID", required=True),
    _field("insured_name", "Insured Name", required=True),
    _field("insurer", "Insurer", SELECT,
           ["AIG", "Allianz", "AXA", "Zurich", "Liberty", "Other"], required=True),
    _field("assigned_surveyor", "Assigned Surveyor", SELECT,
           ["John Smith", "Sarah Johnson", "Mike Brown", "Emma Davis", "Other"]),
    _field("policy_number", "Policy Number"),
    _field("sum_insured", "Sum Insured", NUMBER),
    _field("date_of_loss", "Date of Loss", DATE),
    _field("loss_description", "Loss Description", TEXTAREA),
)

# (section id, name, color, slice of the standard list)
DEFAULT_SECTIONS: Tuple[Tuple[str, str, ColorTag, slice], ...] = (
    ("section1", "Section 1 - Basic Information", ColorTag.PRIMARY, slice(0, 13)),
    ("section2", "Section 2 - Survey & Loss Details", ColorTag.WARNING, slice(13, 23)),
    ("section3", "Section 3 - Transportation Details", ColorTag.SUCCESS, slice(23, 29)),
    ("section4", "Section 4 - Report Section", ColorTag.INFO, slice(29, None)),
)

DEFAULT_SECTION_IDS: Tuple[str, ...] = tuple(s[0] for s in DEFAULT_SECTIONS)


def get_descriptors(policy_type_name: Optional[str]) -> List[FieldDescriptor]:
    """
    Return the standard field descriptors for a policy type.

    The type name is matched case-insensitively by substring against each
    specialization branch; the first match appends its extra fields to the
    common list, and no match returns the common list unchanged.

    Args:
        policy_type_name: Display name of the policy type (may be None)

    Returns:
        Fresh, ordered list of FieldDescriptor
    """
    name = (policy_type_name or "").lower()
    descriptors = [copy.deepcopy(d) for d in COMMON_FIELDS]
    for keywords, extra in SPECIALIZATIONS:
        if any(keyword in name for keyword in keywords):
            descriptors.extend(copy.deepcopy(d) for d in extra)
            break
    return descriptors


def get_policy_detail_descriptors() -> List[FieldDescriptor]:
    """Return the fixed policy-details field set shown above the dynamic sections."""
    return [copy.deepcopy(d) for d in POLICY_DETAIL_FIELDS]


def default_section_fields(policy_type_name: Optional[str]) -> Dict[str, List[FieldDescriptor]]:
    """
    Split the standard descriptors into the four default sections.

    Specialised extra fields fall into the last section's open-ended slice.
    """
    descriptors = get_descriptors(policy_type_name)
    seeded: Dict[str, List[FieldDescriptor]] = {}
    for section_id, _, _, window in DEFAULT_SECTIONS:
        seeded[section_id] = []
        for descriptor in descriptors[window]:
            descriptor.section_id = section_id
            seeded[section_id].append(descriptor)
    return seeded


def find_descriptor(name: str, policy_type_name: Optional[str] = None) -> Optional[FieldDescriptor]:
    """Look up a standard or policy-detail descriptor by field name."""
    for descriptor in get_descriptors(policy_type_name) + get_policy_detail_descriptors():
        if descriptor.name == name:
            return descriptor
    return None
