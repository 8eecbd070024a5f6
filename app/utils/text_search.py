"""
Text search helpers for selection lists.
Matching is case-insensitive and ignores diacritics ("Košice" matches "kosice").
"""
import unicodedata
from typing import Iterable, List


def remove_diacritics(text: str) -> str:
    """Strip combining marks after NFD decomposition."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_search(text: str) -> str:
    return remove_diacritics(text.casefold())


def collation_key(text: str):
    """
    Sort key approximating locale-aware ordering.
    
    Case and accents are ignored first; the raw string breaks ties so the
    order stays total and deterministic.
    """
    return (normalize_for_search(text), text)


def filter_options(options: Iterable[str], query: str | None) -> List[str]:
    """
    Keep the options whose normalized text contains the normalized query.
    
    Args:
        options: Candidate strings, in display order
        query: Search text; empty or None keeps everything
        
    Returns:
        Matching options in their original order
    """
    options = list(options)
    if not query:
        return options
    needle = normalize_for_search(query)
    return [option for option in options if needle in normalize_for_search(option)]
