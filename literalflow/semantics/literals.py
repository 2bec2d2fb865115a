"""Literal extraction: immediate constant forms recognised without traversal."""

from __future__ import annotations

from typing import Optional

from .adapter import RepresentationAdapter
from .candidates import Candidate, Provenance


def try_extract(node, adapter: RepresentationAdapter) -> Optional[Candidate]:
    """
    Recognise ``node`` as a literal or as a reference to a known string constant.

    Returns None for anything else; callers fall through to full traversal.
    """
    text = adapter.literal_value(node)
    if text is not None:
        return Candidate(text, Provenance.LITERAL)

    symbol = adapter.resolve(node)
    if symbol is not None and symbol.is_field:
        value = symbol.constant_value()
        if isinstance(value, str):
            return Candidate(value, Provenance.QUALIFIED_CONSTANT)
    return None
