"""
Unit tests for blocking document operations.

Runs every operation against the in-memory store from conftest.
"""

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import List, Optional

import pytest
from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import AutoReconnect, OperationFailure

from mongolino.exceptions import (ConnectivityError, FormatError,
                                  IndexConflictError, SelectorError, StoreError,
                                  UnsavedDocumentError)
from mongolino.observability import add_error_handler, get_metrics_collector
from mongolino.repositories import Document, increment_by, mongo, one_of, where


@dataclass
class Person(Document):
    name: str
    city: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    visits: int = 0


@pytest.fixture
def store(fake_server):
    """The collection backing Person."""
    return fake_server.collection("default", "person")


@pytest.fixture
def people(fake_server):
    """Three stored people."""
    return Person.insert_many(
        [
            Person(name="Ada", city="London", visits=3),
            Person(name="Bob", city="Paris", visits=1),
            Person(name="Cleo", city="Paris", visits=5),
        ]
    )


class TestInsertAndGet:
    """Test insertion and lookup by id."""

    def test_insert_assigns_id(self, fake_server):
        ada = Person.insert(Person(name="Ada"))
        assert isinstance(ada.id, ObjectId)

    def test_insert_keeps_supplied_id(self, fake_server):
        oid = ObjectId()
        assert Person.insert(Person(name="Ada", id=oid)).id == oid

    def test_round_trip(self, fake_server):
        ada = Person.insert(Person(name="Ada", city="London", tags=["math"], visits=2))
        assert Person.get(ada.id) == ada

    def test_get_accepts_hex_text(self, fake_server):
        ada = Person.insert(Person(name="Ada"))
        assert Person.get(str(ada.id)) == ada

    def test_get_missing_returns_none(self, fake_server):
        assert Person.get(ObjectId()) is None

    def test_get_malformed_id(self, fake_server):
        with pytest.raises(FormatError):
            Person.get("12345")

    def test_projection_is_stored(self, fake_server, store):
        Person.insert(Person(name="Ada Lovelace", city="London"))
        assert store.docs[0]["full_text"] == "Lovelace London Ada"

    def test_insert_rejects_other_types(self, fake_server):
        with pytest.raises(TypeError):
            Person.insert({"name": "Ada"})

    def test_duplicate_id_is_store_error(self, fake_server):
        ada = Person.insert(Person(name="Ada"))
        with pytest.raises(StoreError):
            Person.insert(Person(name="Ada again", id=ada.id))

    def test_insert_many_empty(self, fake_server):
        assert Person.insert_many([]) == []

    def test_parse_id(self):
        oid = ObjectId()
        assert Person.parse_id(str(oid)) == oid
        with pytest.raises(FormatError):
            Person.parse_id("zz")


class TestQueries:
    """Test existence, counting and retrieval."""

    def test_empty_collection(self, fake_server):
        assert Person.is_empty()
        assert not Person.exists()
        assert Person.count() == 0
        assert Person.all() == []
        assert Person.first() is None

    def test_exists(self, people):
        assert not Person.is_empty()
        assert Person.exists(where("name", "Bob"))
        assert not Person.exists(where("name", "Zed"))
        assert Person.exists(lambda p: p.visits > 4)
        assert not Person.exists(lambda p: p.visits > 10)

    def test_count(self, people):
        assert Person.count() == 3
        assert Person.count(where("city", "Paris")) == 2
        assert Person.count(one_of("name", ["Ada", "Cleo", "Zed"])) == 2
        assert Person.count(lambda p: p.visits >= 3) == 2
        assert Person.count({"city": "London"}) == 1

    def test_count_after_inserts_and_deletes(self, fake_server):
        inserted = [Person.insert(Person(name=f"p{i}")) for i in range(7)]
        for person in inserted[:3]:
            assert Person.delete(person.id) == 1
        assert Person.count() == 4

    def test_first(self, people):
        assert Person.first(where("city", "Paris")).name == "Bob"
        assert Person.first(lambda p: p.name.startswith("C")).name == "Cleo"
        assert Person.first(where("name", "Zed")) is None

    def test_find(self, people):
        assert [p.name for p in Person.find(where("city", "Paris"))] == ["Bob", "Cleo"]
        assert [p.name for p in Person.find(lambda p: p.visits < 5)] == ["Ada", "Bob"]
        assert Person.find(where("name", "Zed")) == []

    def test_find_by_id_selector(self, people):
        ada = people[0]
        assert Person.find(where("id", str(ada.id))) == [ada]

    def test_unsupported_criteria(self, people):
        with pytest.raises(SelectorError):
            Person.find(42)

    def test_filter_with_increment_selector(self, people):
        with pytest.raises(SelectorError):
            Person.count(increment_by("visits", 1))

    def test_sorted_by(self, people):
        assert [p.name for p in Person.sorted_by("visits")] == ["Bob", "Ada", "Cleo"]
        assert [p.name for p in Person.sorted_by("visits", DESCENDING)] == ["Cleo", "Ada", "Bob"]

    def test_sorted_by_unknown_attribute(self, people):
        with pytest.raises(SelectorError):
            Person.sorted_by("age")

    def test_sorted_by_invalid_direction(self, people):
        with pytest.raises(ValueError):
            Person.sorted_by("name", 0)

    def test_search_and_sort_scenario(self, fake_server):
        ada = Person.insert(Person(name="Ada"))
        bob = Person.insert(Person(name="Bob"))

        assert Person.search("Ada") == [ada]
        assert Person.sorted_by("name") == [ada, bob]

    def test_search_matches_any_string_attribute(self, people):
        assert [p.name for p in Person.search("paris")] == ["Bob", "Cleo"]
        assert Person.search("Tokyo") == []


class TestRandom:
    """Test random selection."""

    def test_empty_collection(self, fake_server):
        assert Person.random() is None

    def test_every_document_can_be_chosen(self, people):
        seen = {Person.random().name for _ in range(200)}
        assert seen == {"Ada", "Bob", "Cleo"}

    def test_collection_shrinking_between_steps(self, people, store, monkeypatch):
        monkeypatch.setattr(mongo._rng, "randrange", lambda n: n - 1)
        original_count = store.count_documents

        def count_then_delete(filter):
            total = original_count(filter)
            store.docs.clear()
            return total

        monkeypatch.setattr(store, "count_documents", count_then_delete)
        assert Person.random() is None


class TestMutations:
    """Test replace and partial updates."""

    def test_replace(self, people):
        ada = people[0]
        ada.city = "Cambridge"
        ada.visits = 10
        assert Person.replace(ada)
        assert Person.get(ada.id) == ada

    def test_replace_refreshes_projection(self, people, store):
        ada = people[0]
        ada.city = "Cambridge"
        Person.replace(ada)
        assert Person.search("Cambridge") == [ada]
        assert Person.search("London") == []

    def test_replace_unknown_id(self, fake_server):
        assert not Person.replace(Person(name="Ghost", id=ObjectId()))

    def test_replace_unsaved(self, fake_server):
        with pytest.raises(UnsavedDocumentError):
            Person.replace(Person(name="Ghost"))

    def test_set_field(self, people):
        bob = people[1]
        assert Person.set_field(bob, where("city", "Rome"))
        assert bob.city == "Rome"
        assert Person.get(bob.id).city == "Rome"
        assert Person.search("Rome") == [bob]
        assert Person.search("Paris") == [people[2]]

    def test_set_field_requires_equality(self, people):
        with pytest.raises(SelectorError):
            Person.set_field(people[0], increment_by("visits", 1))

    def test_set_field_rejects_projection(self, people):
        with pytest.raises(SelectorError):
            Person.set_field(people[0], where("full_text", "x"))

    def test_failed_set_field_leaves_entity_unchanged(self, people, store, monkeypatch):
        def connection_reset(filter, update):
            raise AutoReconnect("connection reset")

        bob = people[1]
        monkeypatch.setattr(store, "update_one", connection_reset)
        with pytest.raises(ConnectivityError):
            Person.set_field(bob, where("city", "Rome"))
        assert bob.city == "Paris"
        stored = next(d for d in store.docs if d["_id"] == bob.id)
        assert stored["city"] == "Paris"

    def test_set_field_unknown_id_leaves_entity_unchanged(self, fake_server):
        ghost = Person(name="Ghost", id=ObjectId())
        assert not Person.set_field(ghost, where("city", "Rome"))
        assert ghost.city is None

    def test_increment_and_inverse(self, people):
        ada = people[0]
        assert Person.increment(ada, "visits", 4)
        assert Person.get(ada.id).visits == 7
        assert Person.increment(ada, "visits", -4)
        assert Person.get(ada.id).visits == 3

    def test_increment_does_not_touch_local_copy(self, people):
        ada = people[0]
        Person.increment(ada, "visits", 1)
        assert ada.visits == 3

    def test_increment_float(self, people):
        Person.increment(people[0], "visits", 0.5)
        assert Person.get(people[0].id).visits == 3.5

    def test_append_to_set_twice(self, people):
        ada = people[0]
        Person.append_to_set(ada, "tags", "vip")
        Person.append_to_set(ada, "tags", "vip")
        assert Person.get(ada.id).tags == ["vip"]

    def test_append_several_values(self, people):
        ada = people[0]
        Person.append_to_set(ada, "tags", "a", "b")
        Person.append_to_set(ada, "tags", "b", "c")
        assert Person.get(ada.id).tags == ["a", "b", "c"]

    def test_update_unknown_id(self, fake_server):
        ghost = Person(name="Ghost", id=ObjectId())
        assert not Person.increment(ghost, "visits", 1)

    def test_update_unknown_attribute(self, people):
        with pytest.raises(SelectorError):
            Person.increment(people[0], "age", 1)

    def test_get_or_create_existing(self, people):
        found = Person.get_or_create(where("name", "Ada"), Person(name="Ada", city="Oslo"))
        assert found == people[0]
        assert Person.count() == 3

    def test_get_or_create_missing(self, people):
        fallback = Person(name="Dora")
        created = Person.get_or_create(where("name", "Dora"), fallback)
        assert created is fallback
        assert created.id is not None
        assert Person.count() == 4


class TestDeletion:
    """Test every delete target."""

    def test_delete_entity(self, people):
        assert Person.delete(people[0]) == 1
        assert Person.get(people[0].id) is None

    def test_delete_by_id_text(self, people):
        assert Person.delete(str(people[1].id)) == 1
        assert Person.count() == 2

    def test_delete_missing_id(self, people):
        assert Person.delete(ObjectId()) == 0

    def test_delete_by_selector(self, people):
        assert Person.delete(where("city", "Paris")) == 2
        assert [p.name for p in Person.all()] == ["Ada"]

    def test_delete_by_predicate(self, people):
        assert Person.delete(lambda p: p.visits > 2) == 2
        assert [p.name for p in Person.all()] == ["Bob"]

    def test_delete_by_predicate_without_matches(self, people):
        assert Person.delete(lambda p: False) == 0
        assert Person.count() == 3

    def test_delete_unsaved_entity(self, fake_server):
        with pytest.raises(UnsavedDocumentError):
            Person.delete(Person(name="Ghost"))

    def test_delete_malformed_id(self, fake_server):
        with pytest.raises(FormatError):
            Person.delete("not-an-id")

    def test_delete_missing_first_match_is_rejected(self, people):
        with pytest.raises(SelectorError):
            Person.delete(Person.first(where("name", "Zed")))
        assert Person.count() == 3

    def test_delete_everything_needs_empty_filter(self, people):
        assert Person.delete({}) == 3
        assert Person.is_empty()

    def test_delete_many(self, people):
        assert Person.delete_many(people[:2]) == 2
        assert [p.name for p in Person.all()] == ["Cleo"]
        assert Person.delete_many([]) == 0


class TestAggregation:
    """Test client-side sums."""

    def test_sum(self, people):
        assert Person.sum(lambda p: p.visits) == 9
        assert Person.sum(lambda p: p.visits, where("city", "Paris")) == 6

    def test_sum_empty(self, fake_server):
        assert Person.sum(lambda p: p.visits) == 0


class TestIndexes:
    """Test on-demand index creation."""

    def test_ascending_and_descending(self, fake_server, store):
        assert Person.ascending_index("name") == "name_1"
        assert Person.descending_index("visits") == "visits_-1"
        assert store.indexes["name_1"] == [("name", 1)]
        assert store.indexes["visits_-1"] == [("visits", -1)]

    def test_unknown_attribute(self, fake_server):
        with pytest.raises(SelectorError):
            Person.ascending_index("age")

    def test_conflict_is_surfaced(self, fake_server, store):
        Person.count()
        store.create_index_error = OperationFailure("Index already exists", code=86)
        with pytest.raises(IndexConflictError):
            Person.ascending_index("name")


class TestStoreFailures:
    """Test error translation around operations."""

    def test_connection_lost(self, people, store, monkeypatch):
        def connection_reset(filter):
            raise AutoReconnect("connection reset")

        monkeypatch.setattr(store, "count_documents", connection_reset)
        with pytest.raises(ConnectivityError):
            Person.count()
        assert get_metrics_collector().get_error_count("document.count") == 1

    def test_operations_are_recorded(self, people):
        Person.count()
        Person.count()
        assert get_metrics_collector().get_operation_count("document.count") == 2
        assert get_metrics_collector().get_operation_count("document.insert_many") == 1


class TestFireAndForget:
    """Test background inserts."""

    def test_add_returns_future(self, fake_server):
        future = Person.add(Person(name="Ada"))
        assert isinstance(future, Future)
        assert future.result(timeout=5).name == "Ada"
        assert Person.count() == 1

    def test_add_failure_reaches_error_channel(self, fake_server):
        ada = Person.insert(Person(name="Ada"))
        reported = []
        done = threading.Event()

        def handler(exc, operation, context):
            reported.append((exc, operation, context))
            done.set()

        add_error_handler(handler)

        future = Person.add(Person(name="Clone", id=ada.id))
        with pytest.raises(StoreError):
            future.result(timeout=5)

        assert done.wait(timeout=5)
        assert len(reported) == 1
        exc, operation, context = reported[0]
        assert isinstance(exc, StoreError)
        assert operation == "document.add"
        assert context == {"document_type": "Person"}
