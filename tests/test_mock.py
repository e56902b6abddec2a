from __future__ import annotations

import itertools

from conftest import accounts, contacts, opportunities, users
from datastory.builder import Builder
from datastory.config import AppSettings, MockSettings
from datastory.mock import MockStore, id_factory_from_settings, sequence_ids
from datastory.records import Entity
from datastory.session import BuildSession


def counter_ids():
    counter = itertools.count(100)
    return lambda: next(counter)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


def test_generate_id_is_idempotent():
    store = MockStore(counter_ids())
    entity = Entity(accounts, {"name": "Acme"})

    first = store.generate_id(entity)
    second = store.generate_id(entity)

    assert first == 100
    assert second == 100
    assert entity.identity == 100


def test_generate_ids_keeps_existing_identities(session):
    store = MockStore(counter_ids())
    kept = Builder(session, accounts, name="Kept")
    kept.entity.identity = 1
    fresh = Builder(session, accounts, name="Fresh")

    store.generate_ids([kept, fresh])
    store.generate_ids([kept, fresh])

    assert kept.identity == 1
    assert fresh.identity == 100


def test_default_identities_are_unique():
    store = MockStore()
    entities = [Entity(accounts, {"name": str(i)}) for i in range(50)]
    for entity in entities:
        store.generate_id(entity)

    assert len({e.identity for e in entities}) == 50


def test_sequence_identities_from_settings():
    factory = id_factory_from_settings(MockSettings(id_strategy="sequence", id_prefix="ACC", id_width=4))
    first, second = factory(), factory()

    assert first.startswith("ACC") and len(first) == 7
    assert first != second


def test_sequence_factories_never_collide():
    a, b = sequence_ids("X", 3), sequence_ids("X", 3)

    assert len({a(), b(), a(), b()}) == 4


# ---------------------------------------------------------------------------
# Storage and retrieval
# ---------------------------------------------------------------------------


def test_store_deduplicates_by_object():
    store = MockStore()
    entity = Entity(accounts, {"name": "Acme"})
    twin = Entity(accounts, {"name": "Acme"})

    store.store(entity)
    store.store([entity, twin])

    assert store.retrieve(accounts) == [entity, twin]
    assert len(store) == 2


def test_retrieve_unknown_type_is_none():
    store = MockStore()
    store.store(Entity(accounts, {"name": "Acme"}))

    assert store.retrieve(contacts) is None
    assert store.retrieve("contacts") is None
    assert store.retrieve_by_filter(contacts, {"last_name": "Doe"}) is None


def test_retrieve_by_filter_is_conjunctive_and_stringified():
    store = MockStore()
    acme = Entity(accounts, {"id": 5, "name": "Acme", "code": "A-1"})
    acme_two = Entity(accounts, {"id": 6, "name": "Acme", "code": "A-2"})
    globex = Entity(accounts, {"id": 7, "name": "Globex"})
    store.store([acme, acme_two, globex])

    assert store.retrieve_by_filter(accounts, {"name": "Acme"}) == [acme, acme_two]
    assert store.retrieve_by_filter(accounts, {"name": "Acme", "code": "A-2"}) == [acme_two]
    assert store.retrieve_by_filter(accounts, {"id": "5"}) == [acme]
    assert store.retrieve_by_filter(accounts, {"name": "Acme", "code": "A-3"}) is None


def test_empty_match_is_none_but_present_type_is_a_list():
    store = MockStore()
    store.store(Entity(accounts, {"name": "Acme"}))

    assert store.retrieve(accounts) != []
    assert store.retrieve_by_filter(accounts, {"name": "Nobody"}) is None


def test_to_frame():
    store = MockStore(counter_ids())
    store.store([Entity(accounts, {"name": "Acme"}), Entity(accounts, {"name": "Globex"})])

    frame = store.to_frame(accounts)
    assert list(frame["name"]) == ["Acme", "Globex"]
    assert store.to_frame(contacts).empty


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


def test_generate_relationships_from_parents_and_references(session):
    store = MockStore(counter_ids())
    acme = Builder(session, accounts, name="Acme", code="A-1")
    contact = Builder(session, contacts, last_name="Doe").set_parent("account_id", acme)
    deal = Builder(session, opportunities, name="Deal").set_reference("account_id", "code", "A-1")
    orphan = Builder(session, opportunities, name="Orphan").set_reference("account_id", "code", "Z-9")

    store.ingest(session.builders())
    store.generate_relationships(session.discovery)

    assert contact.get("account_id") == acme.identity
    assert deal.get("account_id") == acme.identity
    assert "account_id" not in orphan.entity


def test_session_mock_replicates_committable_builders(session):
    owner = Builder(session, users, username="alice")
    acme = Builder(session, accounts, name="Acme").set_parent("owner_id", owner)
    Builder(session, contacts, last_name="Doe").set_parent("account_id", acme)
    Builder(session, contacts, last_name="Roe").set_parent("account_id", acme)

    store = session.mock()

    assert len(store.retrieve(users)) == 1
    assert len(store.retrieve(contacts)) == 2
    assert acme.get("owner_id") == owner.identity
    assert store.retrieve_by_filter(contacts, {"account_id": acme.identity}) is not None
    assert all(e.identity is not None for t in store.record_types() for e in store.retrieve(t))


def test_session_mock_skips_unregistered_builders(session):
    old = Builder(session, accounts, name="Old")
    new = Builder(session, accounts, name="New")
    Builder(session, contacts, last_name="Doe").set_parent("account_id", old).set_parent("account_id", new)

    store = session.mock()

    assert store.retrieve_by_filter(accounts, {"name": "Old"}) is None
    assert old.identity is None
    assert store.retrieve_by_filter(accounts, {"name": "New"}) is not None


def test_session_mock_uses_configured_strategy():
    session = BuildSession(AppSettings(mock=MockSettings(id_strategy="sequence", id_prefix="T")))
    builder = Builder(session, accounts, name="Acme")

    session.mock()

    assert str(builder.identity).startswith("T")
