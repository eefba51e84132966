"""Claim editing: field registry, draft values, sections, assessment worksheet, fee bill and autosave."""

from .autosave import SaveScheduler
from .values import FieldValueStore, Notice
from .sections import SectionOrganizer
from .assessment import AssessmentWorksheet
from .fee_bill import FeeBillWorksheet

__all__ = ['SaveScheduler', 'FieldValueStore', 'Notice', 'SectionOrganizer', 'AssessmentWorksheet', 'FeeBillWorksheet']
