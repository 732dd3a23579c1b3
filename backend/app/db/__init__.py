############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# __init__.py: Database package initialization and exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database package for callgate."""

from backend.app.db.base import Base
from backend.app.db.session import get_async_db, engine, AsyncSessionLocal

__all__ = ["Base", "get_async_db", "engine", "AsyncSessionLocal"]
