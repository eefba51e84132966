"""Claims desk: claim records, dynamic claim forms, assessment worksheets and report assembly."""

__version__ = "0.1.0"
