############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# __init__.py: Root package initialization and version definition
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""callgate - LLM call gateway with response cache and call ledger."""

__version__ = "0.3.0"
