############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# pruning.py: Dataset pruning rules applied to message text
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pruning rules: literal substrings removed from message content.

Fine-tunes are trained on pruned text, so the same rules are applied before
forwarding a prompt to the fine-tune and before counting its input tokens.
"""

import copy
from typing import Any, List, Sequence


def prune_text(text: str, rules: Sequence[str]) -> str:
    """Remove every occurrence of each rule, in order."""
    for rule in rules:
        if rule:
            text = text.replace(rule, "")
    return text


def prune_message(message: Any, rules: Sequence[str]) -> Any:
    """Return a copy of a chat message with pruned text content."""
    if not rules or not isinstance(message, dict):
        return message
    pruned = copy.deepcopy(message)
    content = pruned.get("content")
    if isinstance(content, str):
        pruned["content"] = prune_text(content, rules)
    elif isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                block["text"] = prune_text(block["text"], rules)
    return pruned


def prune_messages(messages: Sequence[Any], rules: Sequence[str]) -> List[Any]:
    return [prune_message(m, rules) for m in messages]
