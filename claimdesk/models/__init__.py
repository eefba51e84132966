"""Data models for claims, dynamic fields, sections, assessments and fee bills."""

from .fields import FieldDescriptor, FieldKind, FieldValue
from .sections import ColorTag, Section, SectionTable, SectionTemplate, TableCell, TemplateField
from .claim import Claim, ClaimDocument, ClaimStatus, PolicyType, Role
from .assessment import (
    Assessment,
    AssessmentHeader,
    AssessmentSummary,
    LabourRow,
    LabourTotals,
    SpareRow,
    SpareTotals,
)
from .fee_bill import FeeBill, FeeBillInputs, FeeBillTotals

__all__ = [
    'FieldDescriptor',
    'FieldKind',
    'FieldValue',
    'ColorTag',
    'Section',
    'SectionTable',
    'SectionTemplate',
    'TableCell',
    'TemplateField',
    'Claim',
    'ClaimDocument',
    'ClaimStatus',
    'PolicyType',
    'Role',
    'Assessment',
    'AssessmentHeader',
    'AssessmentSummary',
    'LabourRow',
    'LabourTotals',
    'SpareRow',
    'SpareTotals',
    'FeeBill',
    'FeeBillInputs',
    'FeeBillTotals',
]
