"""
Entity base class and the full-text projection.

Entities are dataclasses. Every entity carries an ``id`` (a BSON ObjectId,
stored as ``_id``) and a derived ``full_text`` attribute: the deduplicated,
descending-sorted tokens of all its string attributes. ``full_text`` is
written to every stored document so a single text index can cover however
many string attributes the entity has, but it is never read back and
cannot be assigned.

Example:
    @dataclass
    class Person(Entity):
        name: str
        city: str | None = None
        age: int = 0

    Person(name="Ada Lovelace", city="London").full_text
    # 'Lovelace London Ada'
"""

import dataclasses
import functools
import re
import threading
import types
import typing
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar

from bson import ObjectId

from ..constants import FULL_TEXT_FIELD, ID_FIELD, REMOVABLE_CHARACTERS

E = TypeVar("E", bound="Entity")

# Registry of string attributes per entity class, built on first use
_text_fields: dict[type, tuple[str, ...]] = {}
_text_fields_lock = threading.Lock()


def _is_str_annotation(annotation: Any) -> bool:
    """True for ``str``, ``Optional[str]`` and ``str | None``."""
    if annotation is str:
        return True
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return args == [str]
    return False


@functools.lru_cache(maxsize=32)
def _splitter(removable: str) -> re.Pattern:
    return re.compile(f"[{re.escape(removable)}]+")


def split_tokens(value: str | None, removable: str) -> list[str]:
    """Split a value on every removable character, dropping empty pieces."""
    if not value:
        return []
    if not removable:
        return [value]
    return [t for t in _splitter(removable).split(value) if t]


def project_full_text(
    values: typing.Iterable[str | None], removable: str = REMOVABLE_CHARACTERS
) -> str:
    """
    Build the full-text projection of a set of string values.

    Tokens are deduplicated case-insensitively (the first casing seen is
    kept), sorted in descending ordinal order and joined with single spaces.
    """
    seen: dict[str, str] = {}
    for value in values:
        for token in split_tokens(value, removable):
            seen.setdefault(token.casefold(), token)
    return " ".join(sorted(seen.values(), reverse=True))


@dataclass(kw_only=True)
class Entity:
    """
    Base class for stored entities.

    Subclasses must be dataclasses too. Class attributes tune the projection:

        text_fields            explicit tuple of attributes feeding full_text
                               (default: every ``str`` / ``str | None`` field)
        removable_characters   characters tokens are split on
    """

    id: ObjectId | None = None

    text_fields: ClassVar[tuple[str, ...] | None] = None
    removable_characters: ClassVar[str] = REMOVABLE_CHARACTERS

    @property
    def full_text(self) -> str:
        """Derived token string backing the text index. Recomputed on every access."""
        return project_full_text(
            (getattr(self, name) for name in type(self).string_fields()),
            type(self).removable_characters,
        )

    @full_text.setter
    def full_text(self, value: str) -> None:
        # Derived; assignments are ignored
        pass

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in dataclasses.fields(cls))

    @classmethod
    def string_fields(cls) -> tuple[str, ...]:
        """Attributes whose values feed the full-text projection."""
        fields = _text_fields.get(cls)
        if fields is not None:
            return fields

        with _text_fields_lock:
            fields = _text_fields.get(cls)
            if fields is None:
                if cls.text_fields is not None:
                    fields = tuple(f for f in cls.text_fields if f != FULL_TEXT_FIELD)
                else:
                    hints = typing.get_type_hints(cls)
                    fields = tuple(
                        f.name
                        for f in dataclasses.fields(cls)
                        if f.name != FULL_TEXT_FIELD and _is_str_annotation(hints.get(f.name))
                    )
                _text_fields[cls] = fields
            return fields

    def to_document(self) -> dict[str, Any]:
        """Convert the entity to a document for storage, projection included."""
        data: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name == "id":
                if value is not None:
                    data[ID_FIELD] = value
            else:
                data[f.name] = value
        data[FULL_TEXT_FIELD] = self.full_text
        return data

    @classmethod
    def from_document(cls: type[E], data: dict[str, Any] | None) -> E | None:
        """Create an entity from a stored document. Unknown keys are ignored."""
        if data is None:
            return None

        values = {k: v for k, v in data.items() if k != ID_FIELD}
        if ID_FIELD in data:
            values["id"] = data[ID_FIELD]

        field_names = cls.field_names()
        return cls(**{k: v for k, v in values.items() if k in field_names})
