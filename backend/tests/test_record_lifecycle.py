from datetime import datetime
from datetime import timezone

import pytest

from entityforge.errors import ActivationNotEnabled
from entityforge.errors import DefinitionInactive
from entityforge.errors import ImmutableFieldViolation
from entityforge.errors import NotFound
from entityforge.errors import ValidationFailed
from entityforge.models.models import EntityRecord


def test_create_materialises_defaults_and_audit_columns(db_session, make_definition, lifecycle, actor, recorder):
    definition = make_definition()

    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "ACME001"}}, actor)

    assert record.id is not None
    assert record.definition_id == definition.id
    assert record.definition_code == "CUSTOMER"
    assert record.data == {"customerCode": "ACME001", "tier": "basic"}
    assert record.is_active is True
    assert record.created_by == record.updated_by == actor.id
    # Disabled features leave their columns empty.
    assert record.version is None
    assert record.is_current is None
    assert record.effective_from is None
    assert record.parent_ref is None
    assert recorder.names()[-1] == "record.created"


def test_prepare_for_create_does_not_persist(db_session, make_definition, lifecycle, actor):
    definition = make_definition()

    draft = lifecycle.prepare_for_create(definition, {"data": {"customerCode": "ACME001"}}, actor)

    assert draft.id is None
    assert db_session.query(EntityRecord).count() == 0


def test_create_reports_every_violation(db_session, make_definition, lifecycle, actor):
    definition = make_definition()

    with pytest.raises(ValidationFailed) as exc_info:
        lifecycle.create(db_session, definition, {"data": {"customerCode": "A", "email": "nope"}}, actor)

    assert {(v.field, v.constraint) for v in exc_info.value.violations} == {
        ("customerCode", "minLength"),
        ("email", "format"),
    }
    assert db_session.query(EntityRecord).count() == 0


def test_inactive_definition_rejects_create_and_update(db_session, make_definition, registry, lifecycle, actor):
    definition = make_definition()
    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "ACME001"}}, actor)
    registry.toggle_usable(db_session, definition, actor)

    with pytest.raises(DefinitionInactive):
        lifecycle.create(db_session, definition, {"data": {"customerCode": "ACME002"}}, actor)
    with pytest.raises(DefinitionInactive):
        lifecycle.update(db_session, definition, record, {"data": {"email": "a@a.com"}}, actor)

    # Existing records stay readable.
    assert lifecycle.get(db_session, definition, record.id).id == record.id


def test_activation_uses_caller_value_or_default_state(db_session, make_definition, lifecycle, actor):
    definition = make_definition(activation={"enabled": True, "defaultState": False})

    default = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}}, actor)
    explicit = lifecycle.create(db_session, definition, {"data": {"customerCode": "BBB"}, "isActive": True}, actor)

    assert default.is_active is False
    assert explicit.is_active is True


def test_activation_fields_ignored_when_disabled(db_session, make_definition, lifecycle, actor):
    definition = make_definition(activation={"enabled": False})

    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}, "isActive": False}, actor)

    assert record.is_active is None
    with pytest.raises(ActivationNotEnabled):
        lifecycle.toggle_activation(db_session, definition, record, actor)


def test_toggle_activation(db_session, make_definition, lifecycle, actor, other_actor, recorder):
    definition = make_definition()
    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}}, actor)

    lifecycle.toggle_activation(db_session, definition, record, other_actor)

    assert record.is_active is False
    assert record.updated_by == other_actor.id
    assert recorder.of("record.activation_toggled")[0].details["current"] is False


def test_time_bounding_defaults_and_ordering(db_session, make_definition, lifecycle, actor):
    definition = make_definition(activation={"enabled": True, "useTimeBounding": True})

    open_ended = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}}, actor)
    assert open_ended.effective_from is not None
    assert open_ended.effective_to is None

    bounded = lifecycle.create(
        db_session,
        definition,
        {
            "data": {"customerCode": "BBB"},
            "effectiveFrom": "2024-01-01T00:00:00+02:00",
            "effectiveTo": "2025-01-01T00:00:00Z",
        },
        actor,
    )
    # Stored as naive UTC.
    assert bounded.effective_from == datetime(2023, 12, 31, 22, 0)
    assert bounded.effective_to == datetime(2025, 1, 1)


def test_effective_window_must_be_ordered(db_session, make_definition, lifecycle, actor):
    definition = make_definition(activation={"enabled": True, "useTimeBounding": True})

    with pytest.raises(ValidationFailed) as exc_info:
        lifecycle.create(
            db_session,
            definition,
            {"data": {"customerCode": "AAA"}, "effectiveFrom": "2024-01-01T00:00:00Z", "effectiveTo": "2023-01-01T00:00:00Z"},
            actor,
        )

    assert exc_info.value.violations[0].field == "effectiveTo"
    assert exc_info.value.violations[0].constraint == "after_effective_from"
    assert db_session.query(EntityRecord).count() == 0


def test_time_bounding_ignored_when_disabled(db_session, make_definition, lifecycle, actor):
    definition = make_definition()

    record = lifecycle.create(
        db_session,
        definition,
        {"data": {"customerCode": "AAA"}, "effectiveFrom": "2024-01-01T00:00:00Z", "effectiveTo": "2023-01-01T00:00:00Z"},
        actor,
    )

    assert record.effective_from is None
    assert record.effective_to is None


def test_in_place_update_merges_data(db_session, make_definition, lifecycle, actor, other_actor, recorder):
    definition = make_definition()
    record = lifecycle.create(
        db_session, definition, {"data": {"customerCode": "AAA", "email": "a@a.com"}}, actor
    )

    updated = lifecycle.update(db_session, definition, record, {"data": {"email": "b@b.com"}}, other_actor)

    assert updated.id == record.id
    assert updated.data == {"customerCode": "AAA", "email": "b@b.com", "tier": "basic"}
    assert updated.created_by == actor.id
    assert updated.updated_by == other_actor.id
    assert db_session.query(EntityRecord).count() == 1
    assert recorder.of("record.updated")[0].details["fields"] == ["data"]


def test_update_revalidates_merged_data(db_session, make_definition, lifecycle, actor):
    definition = make_definition()
    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}}, actor)

    with pytest.raises(ValidationFailed):
        lifecycle.update(db_session, definition, record, {"data": {"customerCode": None}}, actor)

    db_session.refresh(record)
    assert record.data["customerCode"] == "AAA"


def test_update_rejects_system_field_changes(db_session, make_definition, lifecycle, actor):
    definition = make_definition()
    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}}, actor)

    with pytest.raises(ImmutableFieldViolation):
        lifecycle.update(db_session, definition, record, {"entityCode": "OTHER"}, actor)
    with pytest.raises(ImmutableFieldViolation):
        lifecycle.update(db_session, definition, record, {"entityId": definition.id + 1}, actor)

    # Echoed values are tolerated.
    lifecycle.update(db_session, definition, record, {"entityCode": "customer", "entityId": definition.id}, actor)


def test_hierarchy_stores_typed_parent_reference(db_session, make_definition, lifecycle, actor):
    definition = make_definition(hierarchy={"enabled": True, "parentLinkField": "parentCustomer"})
    parent = lifecycle.create(db_session, definition, {"data": {"customerCode": "PARENT"}}, actor)

    child = lifecycle.create(
        db_session, definition, {"data": {"customerCode": "CHILD"}, "parent": parent.id}, actor
    )

    assert child.parent_ref == str(parent.id)
    assert child.parent_link_type == "id"
    assert "parentCustomer" not in child.data
    assert lifecycle.resolve_parent(db_session, definition, child).id == parent.id
    assert [c.id for c in lifecycle.list_children(db_session, definition, parent)] == [child.id]


def test_parent_existence_is_not_checked(db_session, make_definition, lifecycle, actor):
    definition = make_definition(hierarchy={"enabled": True})

    orphan = lifecycle.create(db_session, definition, {"data": {"customerCode": "ORPHAN"}, "parent": 999}, actor)

    assert orphan.parent_ref == "999"
    assert lifecycle.resolve_parent(db_session, definition, orphan) is None


def test_code_links_resolve_through_business_code(db_session, make_definition, lifecycle, actor):
    definition = make_definition(
        versioning=True,
        hierarchy={"enabled": True, "parentLinkField": "parentCode", "linkType": "code"},
    )
    parent = lifecycle.create(db_session, definition, {"data": {"customerCode": "HEADQ"}}, actor)
    child = lifecycle.create(db_session, definition, {"data": {"customerCode": "BRANCH"}, "parent": "HEADQ"}, actor)

    # The logical parent survives a new revision.
    revised = lifecycle.update(db_session, definition, parent, {"data": {"email": "hq@acme.com"}}, actor)

    assert lifecycle.resolve_parent(db_session, definition, child).id == revised.id
    assert [c.id for c in lifecycle.list_children(db_session, definition, revised)] == [child.id]


def test_parent_ignored_when_hierarchy_disabled(db_session, make_definition, lifecycle, actor):
    definition = make_definition()

    record = lifecycle.create(db_session, definition, {"data": {"customerCode": "AAA"}, "parent": 1}, actor)

    assert record.parent_ref is None


def test_delete_removes_exactly_one_record(db_session, make_definition, lifecycle, actor, recorder):
    definition = make_definition()
    keep = lifecycle.create(db_session, definition, {"data": {"customerCode": "KEEP"}}, actor)
    drop = lifecycle.create(db_session, definition, {"data": {"customerCode": "DROP"}}, actor)

    lifecycle.delete(db_session, definition, drop, actor)

    assert [r.id for r in db_session.query(EntityRecord).all()] == [keep.id]
    assert recorder.names()[-1] == "record.deleted"


def test_get_checks_owning_definition(db_session, make_definition, lifecycle, actor):
    customers = make_definition("CUSTOMER")
    suppliers = make_definition("SUPPLIER")
    record = lifecycle.create(db_session, customers, {"data": {"customerCode": "AAA"}}, actor)

    with pytest.raises(NotFound):
        lifecycle.get(db_session, suppliers, record.id)
    with pytest.raises(NotFound):
        lifecycle.get(db_session, customers, 12345)


def test_list_filters_and_search(db_session, make_definition, lifecycle, actor):
    definition = make_definition()
    for code in ("ALPHA", "BETA", "GAMMA"):
        lifecycle.create(db_session, definition, {"data": {"customerCode": code}}, actor)
    beta = lifecycle.list(db_session, definition, search="beta").items[0]
    lifecycle.toggle_activation(db_session, definition, beta, actor)

    everything = lifecycle.list(db_session, definition)
    assert [r.data["customerCode"] for r in everything.items] == ["GAMMA", "BETA", "ALPHA"]

    active = lifecycle.list(db_session, definition, active=True)
    assert {r.data["customerCode"] for r in active.items} == {"ALPHA", "GAMMA"}

    paged = lifecycle.list(db_session, definition, page=2, limit=2)
    assert paged.total == 3
    assert paged.total_pages == 2
    assert [r.data["customerCode"] for r in paged.items] == ["ALPHA"]


def test_search_matches_values_not_keys(db_session, make_definition, lifecycle, actor):
    definition = make_definition()
    lifecycle.create(db_session, definition, {"data": {"customerCode": "Müller", "email": "m@example.com"}}, actor)
    smith = lifecycle.create(db_session, definition, {"data": {"customerCode": "SMITH"}}, actor)

    assert lifecycle.list(db_session, definition, search="customerCode").total == 0
    assert lifecycle.list(db_session, definition, search="tier").total == 0
    assert lifecycle.list(db_session, definition, search="basic").total == 2
    assert [r.data["customerCode"] for r in lifecycle.list(db_session, definition, search="Müller").items] == [
        "Müller"
    ]
    assert lifecycle.list(db_session, definition, search="MÜLLER").total == 1
    assert lifecycle.list(db_session, definition, search="%").total == 0

    lifecycle.update(db_session, definition, smith, {"data": {"customerCode": "JONES"}}, actor)

    assert lifecycle.list(db_session, definition, search="smith").total == 0
    assert lifecycle.list(db_session, definition, search="jones").total == 1


def test_aware_datetimes_are_stored_as_naive_utc(db_session, make_definition, lifecycle, actor):
    definition = make_definition(activation={"enabled": True, "useTimeBounding": True})

    record = lifecycle.create(
        db_session,
        definition,
        {"data": {"customerCode": "AAA"}, "effectiveFrom": datetime(2024, 5, 1, tzinfo=timezone.utc)},
        actor,
    )

    assert record.effective_from == datetime(2024, 5, 1)
    assert record.effective_from.tzinfo is None
