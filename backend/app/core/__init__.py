############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# __init__.py: Core application logic package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Core request-processing logic for callgate."""
