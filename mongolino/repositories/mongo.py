"""
MongoDB-backed documents.

``Document`` adds a uniform set of class-level CRUD, query, index and
aggregation operations to an ``Entity``. Each document class is bound to
its own collection the first time one of these operations runs; no
per-entity repository code is needed.

Every blocking operation has an ``*_async`` twin with the same results and
the same exceptions. The blocking variants use pymongo, the async ones
motor, both against the same collection.

Criteria accepted by the query operations:

    None                 every document
    Selector             ``where(...)`` / ``one_of(...)``
    Mapping              a raw MongoDB filter, passed through
    callable             ``entity -> bool``, evaluated client-side by
                         scanning the whole collection

Example:
    @dataclass
    class Person(Document):
        database = "crm"

        name: str
        tags: list[str] = field(default_factory=list)
        visits: int = 0

    ada = Person.insert(Person(name="Ada"))
    Person.increment(ada, "visits", 1)
    Person.append_to_set(ada, "tags", "vip")
    Person.search("ada")
    await Person.first_async(where("name", "Ada"))
"""

import dataclasses
import logging
import random as _random
from collections.abc import Callable, Coroutine, Iterable, Mapping
from concurrent.futures import Future
from numbers import Number
from typing import Any, ClassVar, TypeVar, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from .. import background
from ..constants import FULL_TEXT_FIELD, ID_FIELD
from ..database.binding import BoundCollection, get_binding
from ..database.errors import store_operation
from ..database.identifiers import parse_object_id
from ..database.indexes import create_index, create_index_async
from ..exceptions import SelectorError, UnsavedDocumentError
from .base import Entity
from .selectors import Selector, SelectorOp, add_to_set, increment_by, resolve_key

logger = logging.getLogger(__name__)

D = TypeVar("D", bound="Document")

Criteria = Union[Selector, Mapping[str, Any], Callable[[Any], bool], None]
Identifier = Union[ObjectId, str]

# Non-cryptographic source for random()
_rng = _random.Random()


class Document(Entity):
    """
    Entity stored one document per instance in a lazily bound collection.

    Configuration (read once, at first use):

        connection_string   target URI (default: MONGO_URI / localhost)
        database            database name (default: DB_NAME / "default")
        collection_name     collection name (default: lower-cased class name)
    """

    connection_string: ClassVar[str | None] = None
    database: ClassVar[str | None] = None
    collection_name: ClassVar[str | None] = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @classmethod
    def _bound(cls) -> BoundCollection:
        return get_binding(cls).resolve()

    @classmethod
    async def _bound_async(cls) -> BoundCollection:
        return await get_binding(cls).resolve_async()

    @classmethod
    def _compile(cls, criteria: Criteria) -> tuple[dict[str, Any], Callable[[Any], bool] | None]:
        """Split criteria into a store filter and an optional client-side predicate."""
        if criteria is None:
            return {}, None
        if isinstance(criteria, Selector):
            return criteria.as_filter(cls), None
        if isinstance(criteria, Mapping):
            return dict(criteria), None
        if callable(criteria):
            return {}, criteria
        raise SelectorError(
            f"Unsupported criteria type: {type(criteria).__name__}",
            context={"document_type": cls.__name__},
        )

    @classmethod
    def _id_of(cls, entity: "Document") -> ObjectId:
        if not isinstance(entity, cls):
            raise TypeError(f"Expected {cls.__name__}, got {type(entity).__name__}")
        if entity.id is None:
            raise UnsavedDocumentError(
                f"{cls.__name__} has no id; insert it first",
                context={"document_type": cls.__name__},
            )
        return entity.id

    @classmethod
    def _matching(cls: type[D], bound: BoundCollection, query: dict, predicate) -> Iterable[D]:
        for doc in bound.collection.find(query):
            entity = cls.from_document(doc)
            if predicate is None or predicate(entity):
                yield entity

    @classmethod
    async def _matching_async(cls: type[D], bound: BoundCollection, query: dict, predicate) -> list[D]:
        matched = []
        async for doc in bound.async_collection.find(query):
            entity = cls.from_document(doc)
            if predicate is None or predicate(entity):
                matched.append(entity)
        return matched

    @staticmethod
    def _check_direction(direction: int) -> None:
        if direction not in (ASCENDING, DESCENDING):
            raise ValueError(f"direction must be ASCENDING or DESCENDING, got {direction!r}")

    @classmethod
    def _update_one(cls, bound: BoundCollection, operation: str, oid: ObjectId, update: dict) -> bool:
        with store_operation(operation, collection=bound.collection_name, document_id=str(oid)):
            result = bound.collection.update_one({ID_FIELD: oid}, update)
        return result.matched_count > 0

    @classmethod
    async def _update_one_async(
        cls, bound: BoundCollection, operation: str, oid: ObjectId, update: dict
    ) -> bool:
        with store_operation(operation, collection=bound.collection_name, document_id=str(oid)):
            result = await bound.async_collection.update_one({ID_FIELD: oid}, update)
        return result.matched_count > 0

    @classmethod
    def _set_field_update(cls, entity: "Document", selector: Selector) -> dict[str, Any]:
        if selector.op is not SelectorOp.EQUALS:
            raise SelectorError(
                "set_field() takes an equality selector; use increment() or append_to_set()",
                context={"attribute": selector.attribute},
            )
        update = selector.as_update(cls)
        # Projection of the entity as it will be once the write lands
        updated = dataclasses.replace(entity, **{selector.attribute: selector.value})
        update["$set"][FULL_TEXT_FIELD] = updated.full_text
        return update

    @classmethod
    def _deletion_query(cls, target: Any) -> tuple[dict[str, Any] | None, Callable | None, bool]:
        """Return (filter, predicate, single) for a delete target."""
        if target is None:
            raise SelectorError(
                "delete() needs a target; pass {} to delete every document",
                context={"document_type": cls.__name__},
            )
        if isinstance(target, Entity):
            return {ID_FIELD: cls._id_of(target)}, None, True
        if isinstance(target, (ObjectId, str)):
            return {ID_FIELD: parse_object_id(target)}, None, True
        query, predicate = cls._compile(target)
        return query, predicate, False

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    @staticmethod
    def parse_id(text: Identifier) -> ObjectId:
        """
        Parse identifier text.

        Raises:
            FormatError: If the text is not a 24 character hex ObjectId
        """
        return parse_object_id(text)

    # ------------------------------------------------------------------
    # Existence and counting
    # ------------------------------------------------------------------

    @classmethod
    def exists(cls, criteria: Criteria = None) -> bool:
        """True when at least one stored document matches."""
        query, predicate = cls._compile(criteria)
        bound = cls._bound()
        with store_operation("document.exists", collection=bound.collection_name):
            if predicate is None:
                return bound.collection.find_one(query, projection={ID_FIELD: 1}) is not None
            return next(iter(cls._matching(bound, query, predicate)), None) is not None

    @classmethod
    def is_empty(cls) -> bool:
        return not cls.exists()

    @classmethod
    def count(cls, criteria: Criteria = None) -> int:
        """Count matching documents. No criteria counts the whole collection."""
        query, predicate = cls._compile(criteria)
        bound = cls._bound()
        with store_operation("document.count", collection=bound.collection_name):
            if predicate is None:
                return bound.collection.count_documents(query)
            return sum(1 for _ in cls._matching(bound, query, predicate))

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    @classmethod
    def get(cls: type[D], id: Identifier) -> D | None:
        """
        Get a document by id.

        Raises:
            FormatError: If ``id`` is text that is not a valid ObjectId
        """
        oid = parse_object_id(id)
        bound = cls._bound()
        with store_operation("document.get", collection=bound.collection_name):
            doc = bound.collection.find_one({ID_FIELD: oid})
        return cls.from_document(doc)

    @classmethod
    def first(cls: type[D], criteria: Criteria = None) -> D | None:
        """First matching document in natural order, or None."""
        query, predicate = cls._compile(criteria)
        bound = cls._bound()
        with store_operation("document.first", collection=bound.collection_name):
            if predicate is None:
                return cls.from_document(bound.collection.find_one(query))
            return next(iter(cls._matching(bound, query, predicate)), None)

    @classmethod
    def find(cls: type[D], criteria: Criteria = None) -> list[D]:
        """All matching documents."""
        query, predicate = cls._compile(criteria)
        bound = cls._bound()
        with store_operation("document.find", collection=bound.collection_name):
            return list(cls._matching(bound, query, predicate))

    @classmethod
    def all(cls: type[D]) -> list[D]:
        return cls.find()

    @classmethod
    def sorted_by(cls: type[D], attribute: str, direction: int = ASCENDING) -> list[D]:
        """All documents ordered by one attribute."""
        cls._check_direction(direction)
        key = resolve_key(cls, attribute)
        bound = cls._bound()
        with store_operation("document.sorted_by", collection=bound.collection_name):
            cursor = bound.collection.find({}).sort(key, direction)
            return [cls.from_document(doc) for doc in cursor]

    @classmethod
    def search(cls: type[D], text: str) -> list[D]:
        """
        Full-text search over the text index.

        Matches whole tokens of the ``full_text`` projection, so any string
        attribute of the document can produce a hit.
        """
        bound = cls._bound()
        with store_operation("document.search", collection=bound.collection_name):
            cursor = bound.collection.find({"$text": {"$search": text}})
            return [cls.from_document(doc) for doc in cursor]

    @classmethod
    def random(cls: type[D]) -> D | None:
        """
        A randomly chosen document, or None when the collection is empty.

        Counts, then skips a random offset. A concurrent write between the
        two steps can skew the choice or yield None; uniformity is only
        approximate.
        """
        bound = cls._bound()
        with store_operation("document.random", collection=bound.collection_name):
            total = bound.collection.count_documents({})
            if total == 0:
                return None
            doc = bound.collection.find_one({}, skip=_rng.randrange(total))
        return cls.from_document(doc)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    @classmethod
    def insert(cls: type[D], entity: D) -> D:
        """Store a new document, assigning an id when it has none."""
        if not isinstance(entity, cls):
            raise TypeError(f"Expected {cls.__name__}, got {type(entity).__name__}")
        if entity.id is None:
            entity.id = ObjectId()
        bound = cls._bound()
        with store_operation("document.insert", collection=bound.collection_name):
            bound.collection.insert_one(entity.to_document())
        logger.debug(f"Inserted {cls.__name__} with id={entity.id}")
        return entity

    @classmethod
    def insert_many(cls: type[D], entities: Iterable[D]) -> list[D]:
        entities = list(entities)
        if not entities:
            return entities
        for entity in entities:
            if not isinstance(entity, cls):
                raise TypeError(f"Expected {cls.__name__}, got {type(entity).__name__}")
            if entity.id is None:
                entity.id = ObjectId()
        bound = cls._bound()
        with store_operation("document.insert_many", collection=bound.collection_name):
            bound.collection.insert_many([e.to_document() for e in entities])
        logger.debug(f"Inserted {len(entities)} {cls.__name__} documents")
        return entities

    @classmethod
    def add(cls: type[D], entity: D) -> Future:
        """
        Insert without waiting.

        Returns a Future that the caller may ignore; a failure is still
        reported to the error channel.
        """
        return background.submit(
            cls.insert, entity, operation="document.add", document_type=cls.__name__
        )

    @classmethod
    def replace(cls, entity: "Document") -> bool:
        """Overwrite the stored document with the entity. False if no such id is stored."""
        oid = cls._id_of(entity)
        bound = cls._bound()
        with store_operation(
            "document.replace", collection=bound.collection_name, document_id=str(oid)
        ):
            result = bound.collection.replace_one({ID_FIELD: oid}, entity.to_document())
        return result.matched_count > 0

    @classmethod
    def set_field(cls, entity: "Document", selector: Selector) -> bool:
        """
        Set one attribute of a stored document.

        The stored projection is refreshed in the same write. Once the write
        matches, the entity is updated in place as well; a failed write leaves
        it untouched.
        """
        oid = cls._id_of(entity)
        update = cls._set_field_update(entity, selector)
        matched = cls._update_one(cls._bound(), "document.set_field", oid, update)
        if matched:
            setattr(entity, selector.attribute, selector.value)
        return matched

    @classmethod
    def append_to_set(cls, entity: "Document", attribute: str, *values: Any) -> bool:
        """Add values to an array attribute unless already present. Store-side only."""
        oid = cls._id_of(entity)
        update = add_to_set(attribute, *values).as_update(cls)
        return cls._update_one(cls._bound(), "document.append_to_set", oid, update)

    @classmethod
    def increment(cls, entity: "Document", attribute: str, delta: Number) -> bool:
        """Atomically add ``delta`` to a numeric attribute. Store-side only."""
        oid = cls._id_of(entity)
        update = increment_by(attribute, delta).as_update(cls)
        return cls._update_one(cls._bound(), "document.increment", oid, update)

    @classmethod
    def get_or_create(cls: type[D], selector: Selector, fallback: D) -> D:
        """
        First document matching ``selector``, or ``fallback`` after inserting it.

        Not atomic: two concurrent callers can both insert.
        """
        found = cls.first(selector)
        if found is not None:
            return found
        return cls.insert(fallback)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    @classmethod
    def delete(cls, target: Any) -> int:
        """
        Delete by entity, id, selector, raw filter or predicate.

        ``None`` is rejected so that ``delete(first(...))`` with no match
        cannot empty the collection. Pass ``{}`` to delete every document.

        Returns:
            Number of deleted documents
        """
        query, predicate, single = cls._deletion_query(target)
        bound = cls._bound()
        with store_operation("document.delete", collection=bound.collection_name):
            if single:
                return bound.collection.delete_one(query).deleted_count
            if predicate is not None:
                ids = [e.id for e in cls._matching(bound, query, predicate)]
                if not ids:
                    return 0
                query = {ID_FIELD: {"$in": ids}}
            return bound.collection.delete_many(query).deleted_count

    @classmethod
    def delete_many(cls, entities: Iterable["Document"]) -> int:
        ids = [cls._id_of(e) for e in entities]
        if not ids:
            return 0
        bound = cls._bound()
        with store_operation("document.delete_many", collection=bound.collection_name):
            return bound.collection.delete_many({ID_FIELD: {"$in": ids}}).deleted_count

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @classmethod
    def sum(cls, projection: Callable[[Any], Number], criteria: Criteria = None) -> Number:
        """
        Sum ``projection`` over matching documents.

        Loads every matching document into memory first.
        """
        return sum(projection(e) for e in cls.find(criteria))

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    @classmethod
    def ascending_index(cls, attribute: str) -> str:
        """
        Ensure an ascending index on an attribute.

        Raises:
            IndexConflictError: If an incompatible index already exists
        """
        return create_index(cls._bound().collection, [(resolve_key(cls, attribute), ASCENDING)])

    @classmethod
    def descending_index(cls, attribute: str) -> str:
        return create_index(cls._bound().collection, [(resolve_key(cls, attribute), DESCENDING)])

    # ------------------------------------------------------------------
    # Asyncio variants
    # ------------------------------------------------------------------

    @staticmethod
    def spawn_async(coro: Coroutine, operation: str | None = None):
        """Run one of the ``*_async`` operations without awaiting it."""
        return background.spawn(coro, operation=operation)

    @classmethod
    async def exists_async(cls, criteria: Criteria = None) -> bool:
        query, predicate = cls._compile(criteria)
        bound = await cls._bound_async()
        with store_operation("document.exists", collection=bound.collection_name):
            if predicate is None:
                doc = await bound.async_collection.find_one(query, projection={ID_FIELD: 1})
                return doc is not None
            return bool(await cls._matching_async(bound, query, predicate))

    @classmethod
    async def is_empty_async(cls) -> bool:
        return not await cls.exists_async()

    @classmethod
    async def count_async(cls, criteria: Criteria = None) -> int:
        query, predicate = cls._compile(criteria)
        bound = await cls._bound_async()
        with store_operation("document.count", collection=bound.collection_name):
            if predicate is None:
                return await bound.async_collection.count_documents(query)
            return len(await cls._matching_async(bound, query, predicate))

    @classmethod
    async def get_async(cls: type[D], id: Identifier) -> D | None:
        oid = parse_object_id(id)
        bound = await cls._bound_async()
        with store_operation("document.get", collection=bound.collection_name):
            doc = await bound.async_collection.find_one({ID_FIELD: oid})
        return cls.from_document(doc)

    @classmethod
    async def first_async(cls: type[D], criteria: Criteria = None) -> D | None:
        query, predicate = cls._compile(criteria)
        bound = await cls._bound_async()
        with store_operation("document.first", collection=bound.collection_name):
            if predicate is None:
                return cls.from_document(await bound.async_collection.find_one(query))
            async for doc in bound.async_collection.find(query):
                entity = cls.from_document(doc)
                if predicate(entity):
                    return entity
            return None

    @classmethod
    async def find_async(cls: type[D], criteria: Criteria = None) -> list[D]:
        query, predicate = cls._compile(criteria)
        bound = await cls._bound_async()
        with store_operation("document.find", collection=bound.collection_name):
            return await cls._matching_async(bound, query, predicate)

    @classmethod
    async def all_async(cls: type[D]) -> list[D]:
        return await cls.find_async()

    @classmethod
    async def sorted_by_async(cls: type[D], attribute: str, direction: int = ASCENDING) -> list[D]:
        cls._check_direction(direction)
        key = resolve_key(cls, attribute)
        bound = await cls._bound_async()
        with store_operation("document.sorted_by", collection=bound.collection_name):
            docs = await bound.async_collection.find({}).sort(key, direction).to_list(length=None)
        return [cls.from_document(doc) for doc in docs]

    @classmethod
    async def search_async(cls: type[D], text: str) -> list[D]:
        bound = await cls._bound_async()
        with store_operation("document.search", collection=bound.collection_name):
            cursor = bound.async_collection.find({"$text": {"$search": text}})
            docs = await cursor.to_list(length=None)
        return [cls.from_document(doc) for doc in docs]

    @classmethod
    async def random_async(cls: type[D]) -> D | None:
        bound = await cls._bound_async()
        with store_operation("document.random", collection=bound.collection_name):
            total = await bound.async_collection.count_documents({})
            if total == 0:
                return None
            doc = await bound.async_collection.find_one({}, skip=_rng.randrange(total))
        return cls.from_document(doc)

    @classmethod
    async def insert_async(cls: type[D], entity: D) -> D:
        if not isinstance(entity, cls):
            raise TypeError(f"Expected {cls.__name__}, got {type(entity).__name__}")
        if entity.id is None:
            entity.id = ObjectId()
        bound = await cls._bound_async()
        with store_operation("document.insert", collection=bound.collection_name):
            await bound.async_collection.insert_one(entity.to_document())
        logger.debug(f"Inserted {cls.__name__} with id={entity.id}")
        return entity

    @classmethod
    async def insert_many_async(cls: type[D], entities: Iterable[D]) -> list[D]:
        entities = list(entities)
        if not entities:
            return entities
        for entity in entities:
            if not isinstance(entity, cls):
                raise TypeError(f"Expected {cls.__name__}, got {type(entity).__name__}")
            if entity.id is None:
                entity.id = ObjectId()
        bound = await cls._bound_async()
        with store_operation("document.insert_many", collection=bound.collection_name):
            await bound.async_collection.insert_many([e.to_document() for e in entities])
        logger.debug(f"Inserted {len(entities)} {cls.__name__} documents")
        return entities

    @classmethod
    async def replace_async(cls, entity: "Document") -> bool:
        oid = cls._id_of(entity)
        bound = await cls._bound_async()
        with store_operation(
            "document.replace", collection=bound.collection_name, document_id=str(oid)
        ):
            result = await bound.async_collection.replace_one(
                {ID_FIELD: oid}, entity.to_document()
            )
        return result.matched_count > 0

    @classmethod
    async def set_field_async(cls, entity: "Document", selector: Selector) -> bool:
        oid = cls._id_of(entity)
        update = cls._set_field_update(entity, selector)
        matched = await cls._update_one_async(
            await cls._bound_async(), "document.set_field", oid, update
        )
        if matched:
            setattr(entity, selector.attribute, selector.value)
        return matched

    @classmethod
    async def append_to_set_async(cls, entity: "Document", attribute: str, *values: Any) -> bool:
        oid = cls._id_of(entity)
        update = add_to_set(attribute, *values).as_update(cls)
        return await cls._update_one_async(
            await cls._bound_async(), "document.append_to_set", oid, update
        )

    @classmethod
    async def increment_async(cls, entity: "Document", attribute: str, delta: Number) -> bool:
        oid = cls._id_of(entity)
        update = increment_by(attribute, delta).as_update(cls)
        return await cls._update_one_async(
            await cls._bound_async(), "document.increment", oid, update
        )

    @classmethod
    async def get_or_create_async(cls: type[D], selector: Selector, fallback: D) -> D:
        found = await cls.first_async(selector)
        if found is not None:
            return found
        return await cls.insert_async(fallback)

    @classmethod
    async def delete_async(cls, target: Any) -> int:
        query, predicate, single = cls._deletion_query(target)
        bound = await cls._bound_async()
        with store_operation("document.delete", collection=bound.collection_name):
            if single:
                result = await bound.async_collection.delete_one(query)
                return result.deleted_count
            if predicate is not None:
                ids = [e.id for e in await cls._matching_async(bound, query, predicate)]
                if not ids:
                    return 0
                query = {ID_FIELD: {"$in": ids}}
            result = await bound.async_collection.delete_many(query)
            return result.deleted_count

    @classmethod
    async def delete_many_async(cls, entities: Iterable["Document"]) -> int:
        ids = [cls._id_of(e) for e in entities]
        if not ids:
            return 0
        bound = await cls._bound_async()
        with store_operation("document.delete_many", collection=bound.collection_name):
            result = await bound.async_collection.delete_many({ID_FIELD: {"$in": ids}})
        return result.deleted_count

    @classmethod
    async def sum_async(cls, projection: Callable[[Any], Number], criteria: Criteria = None) -> Number:
        return sum(projection(e) for e in await cls.find_async(criteria))

    @classmethod
    async def ascending_index_async(cls, attribute: str) -> str:
        bound = await cls._bound_async()
        return await create_index_async(
            bound.async_collection, [(resolve_key(cls, attribute), ASCENDING)]
        )

    @classmethod
    async def descending_index_async(cls, attribute: str) -> str:
        bound = await cls._bound_async()
        return await create_index_async(
            bound.async_collection, [(resolve_key(cls, attribute), DESCENDING)]
        )
