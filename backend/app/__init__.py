############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# __init__.py: Application package initialization
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""callgate Application Package."""

from backend import __version__

__all__ = ["__version__"]
