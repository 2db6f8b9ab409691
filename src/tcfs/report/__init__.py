"""
Reporting module for TCFS.

Turns store outcomes into human-readable and machine-readable output.

Output formats:
    - Console: Rich terminal output with gate-state icons
    - JSON: Structured documents for --json

Example:
    from tcfs.report import print_status, build_status_report, to_json

    print_status(console, status)
    print(to_json(build_status_report(status)))
"""

from tcfs.report.console import (
    format_duration,
    print_listing,
    print_lock_outcome,
    print_status,
    print_unlock_outcome,
)
from tcfs.report.json import (
    build_config_report,
    build_error_report,
    build_list_report,
    build_lock_report,
    build_status_report,
    build_unlock_report,
    status_dict,
    to_json,
)

__all__ = [
    "build_config_report",
    "build_error_report",
    "build_list_report",
    "build_lock_report",
    "build_status_report",
    "build_unlock_report",
    "format_duration",
    "print_listing",
    "print_lock_outcome",
    "print_status",
    "print_unlock_outcome",
    "status_dict",
    "to_json",
]
