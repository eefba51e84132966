"""Report assembly and rendering."""

from .assembler import ReportLayout, ReportSource, build_report
from .render_client import RenderServiceClient, UploadClient

__all__ = ['ReportLayout', 'ReportSource', 'build_report', 'RenderServiceClient', 'UploadClient']
