"""
ImpScope Shared Module
======================

Configuration, structured logging, console output, and scan-result models
shared by every ImpScope component.
"""

from shared.config import ImpScopeConfig, get_config

__all__ = ["ImpScopeConfig", "get_config"]
