"""Report rendering for analysis runs."""

from docker_time_machine.reporting.formats import REPORT_TITLE, render_report, report_payload
from docker_time_machine.reporting.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "REPORT_TITLE", "create_renderer", "render_report", "report_payload"]
