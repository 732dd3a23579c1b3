############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# __init__.py: Security utilities package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Security utilities for callgate."""

from backend.app.security.api_keys import generate_api_key, hash_api_key, verify_api_key

__all__ = [
    "generate_api_key",
    "hash_api_key",
    "verify_api_key",
]
