"""
Field selectors.

A selector names one attribute of a document class and carries the value to
compare against or apply to it. Four variants exist and each knows which
roles it can play:

    EQUALS      filter ``{attr: value}``          update ``$set``
    IN          filter ``{attr: {"$in": [...]}}``  -
    INCREMENT   -                                 update ``$inc``
    ADD_TO_SET  -                                 update ``$addToSet``

Example:
    Person.first(where("name", "Ada"))
    Person.find(one_of("city", ["Paris", "Rome"]))
    Person.set_field(ada, where("email", "ada@example.com"))
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from numbers import Number
from typing import Any

from ..constants import FULL_TEXT_FIELD, ID_FIELD
from ..database.identifiers import parse_object_id
from ..exceptions import SelectorError


class SelectorOp(str, Enum):
    EQUALS = "equals"
    IN = "in"
    INCREMENT = "increment"
    ADD_TO_SET = "add_to_set"


@dataclass(frozen=True)
class Selector:
    """An (attribute, value) pair with the role it plays."""

    attribute: str
    value: Any
    op: SelectorOp = SelectorOp.EQUALS

    def document_key(self, document_cls: type, for_update: bool = False) -> str:
        """
        Resolve the attribute to its stored key on ``document_cls``.

        Raises:
            SelectorError: If the class has no such attribute, or the
                attribute is the derived projection and ``for_update`` is set
        """
        return resolve_key(document_cls, self.attribute, for_update=for_update)

    def as_filter(self, document_cls: type) -> dict[str, Any]:
        """Build a store filter. Only EQUALS and IN selectors can filter."""
        key = self.document_key(document_cls)
        value = self.value
        if key == ID_FIELD:
            value = _coerce_id_value(self)
        if self.op is SelectorOp.EQUALS:
            return {key: value}
        if self.op is SelectorOp.IN:
            return {key: {"$in": list(value)}}
        raise SelectorError(
            f"A {self.op.value} selector cannot be used as a filter",
            context={"attribute": self.attribute},
        )

    def as_update(self, document_cls: type) -> dict[str, Any]:
        """Build a store update. IN selectors cannot update."""
        key = self.document_key(document_cls, for_update=True)
        if self.op is SelectorOp.EQUALS:
            return {"$set": {key: self.value}}
        if self.op is SelectorOp.INCREMENT:
            return {"$inc": {key: self.value}}
        if self.op is SelectorOp.ADD_TO_SET:
            values = list(self.value)
            if len(values) == 1:
                return {"$addToSet": {key: values[0]}}
            return {"$addToSet": {key: {"$each": values}}}
        raise SelectorError(
            f"A {self.op.value} selector cannot be used as an update",
            context={"attribute": self.attribute},
        )


def resolve_key(document_cls: type, attribute: str, for_update: bool = False) -> str:
    """Map an attribute name of ``document_cls`` to its document key."""
    if attribute == FULL_TEXT_FIELD:
        if for_update:
            raise SelectorError(
                f"'{FULL_TEXT_FIELD}' is derived and cannot be assigned",
                context={"document_type": document_cls.__name__},
            )
        return FULL_TEXT_FIELD
    if attribute in ("id", ID_FIELD):
        if for_update:
            raise SelectorError(
                "The identifier is immutable once assigned",
                context={"document_type": document_cls.__name__},
            )
        return ID_FIELD
    if attribute not in document_cls.field_names():
        raise SelectorError(
            f"{document_cls.__name__} has no attribute '{attribute}'",
            context={"document_type": document_cls.__name__, "attribute": attribute},
        )
    return attribute


def _coerce_id_value(selector: Selector) -> Any:
    if selector.op is SelectorOp.IN:
        return [parse_object_id(v) for v in selector.value]
    return parse_object_id(selector.value)


def where(attribute: str, value: Any) -> Selector:
    """Equality filter, or ``$set`` when used as an update."""
    return Selector(attribute, value, SelectorOp.EQUALS)


def one_of(attribute: str, values: Iterable[Any]) -> Selector:
    """Membership filter."""
    if isinstance(values, (str, bytes)):
        raise SelectorError(
            "one_of() expects a collection of values, not a string",
            context={"attribute": attribute},
        )
    return Selector(attribute, tuple(values), SelectorOp.IN)


def increment_by(attribute: str, delta: Number) -> Selector:
    """Atomic numeric increment."""
    if isinstance(delta, bool) or not isinstance(delta, Number):
        raise SelectorError(
            f"Increment delta must be numeric, got {type(delta).__name__}",
            context={"attribute": attribute},
        )
    return Selector(attribute, delta, SelectorOp.INCREMENT)


def add_to_set(attribute: str, *values: Any) -> Selector:
    """Add one or more values to an array attribute, skipping ones already present."""
    if not values:
        raise SelectorError("add_to_set() needs at least one value", context={"attribute": attribute})
    return Selector(attribute, tuple(values), SelectorOp.ADD_TO_SET)
