"""
Mongolino documents

Typed entities stored one document per instance, with class-level CRUD,
query, index and aggregation operations.

Usage:
    from dataclasses import dataclass
    from mongolino.repositories import Document, where

    @dataclass
    class Person(Document):
        name: str
        visits: int = 0

    ada = Person.insert(Person(name="Ada"))
    Person.first(where("name", "Ada"))
"""

from .base import Entity, project_full_text, split_tokens
from .mongo import Document
from .selectors import (
    Selector,
    SelectorOp,
    add_to_set,
    increment_by,
    one_of,
    resolve_key,
    where,
)

__all__ = [
    "Entity",
    "Document",
    "project_full_text",
    "split_tokens",
    # Selectors
    "Selector",
    "SelectorOp",
    "where",
    "one_of",
    "increment_by",
    "add_to_set",
    "resolve_key",
]
