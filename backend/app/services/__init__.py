############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# __init__.py: Services package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Services for callgate."""

from backend.app.services.cache import CacheLookup, CacheStore
from backend.app.services.completions import CompletionService
from backend.app.services.ledger import CallLedger, RecordedCall, ReportInput

__all__ = [
    "CacheLookup",
    "CacheStore",
    "CallLedger",
    "CompletionService",
    "RecordedCall",
    "ReportInput",
]
