"""
Configuration for deployguard.

Settings come from the environment (DEPLOYGUARD_ prefix); lawbook and
policy documents come from YAML files.
"""

from deployguard.config.settings import Settings, get_settings

from deployguard.config.loader import (
    get_config_path,
    load_lawbook,
    load_policy,
    load_signals,
    load_verdicts,
)

__all__ = [
    "Settings",
    "get_settings",
    "get_config_path",
    "load_lawbook",
    "load_policy",
    "load_signals",
    "load_verdicts",
]
