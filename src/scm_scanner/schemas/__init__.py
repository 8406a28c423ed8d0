"""Pydantic schemas for SCM Scanner.

This module provides scan inputs and the records a scan produces.
"""

from .base import SchemaBase, UtcDatetime
from .enums import MergeRequestState, OutputFormat, ToolType
from .scan import GitUrlInfo, ScanRequest
from .scm import ScmCommit, ScmMergeRequest, ScmRepository, ScmUser

__all__ = [
    # Base
    "SchemaBase",
    "UtcDatetime",
    # Enums
    "MergeRequestState",
    "OutputFormat",
    "ToolType",
    # Scan
    "GitUrlInfo",
    "ScanRequest",
    # Records
    "ScmCommit",
    "ScmMergeRequest",
    "ScmRepository",
    "ScmUser",
]
