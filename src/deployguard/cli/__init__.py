"""
CLI commands for deployguard.
"""

from deployguard.cli.audit import audit_command
from deployguard.cli.gate import gate_command
from deployguard.cli.verdict import verdict_command

__all__ = [
    "audit_command",
    "gate_command",
    "verdict_command",
]
