import logging

from ledger_resolver.services.events import (
    CreationEvent,
    correlate,
    find_correlated_event,
    find_event_for_identifier,
    parse_creation_event,
    parse_creation_events,
)

OWNER = "0x" + "c1" * 32
PROJECT_OBJECT = "0x" + "9d" * 32


def _event(**parsed):
    return {"type": "0xpkg::devhub::ProjectCreated", "parsedJson": parsed}


def test_parse_creation_event_numeric_key_and_object_id() -> None:
    numeric = parse_creation_event(_event(project_id="12", owner=OWNER, title="A"))
    assert numeric is not None
    assert numeric.numeric_key == 12
    assert numeric.object_id is None

    by_object = parse_creation_event(_event(projectId=PROJECT_OBJECT, owner=OWNER, title="A"))
    assert by_object is not None
    assert by_object.numeric_key is None
    assert by_object.object_id == PROJECT_OBJECT

    both = parse_creation_event(_event(project_id="5", project_object_id=PROJECT_OBJECT, owner=OWNER, title="A"))
    assert both is not None
    assert (both.numeric_key, both.object_id) == (5, PROJECT_OBJECT)


def test_parse_creation_events_respects_window() -> None:
    raw = [_event(project_id=str(index), owner=OWNER, title=f"T{index}") for index in range(1, 6)]
    assert [event.numeric_key for event in parse_creation_events(raw, window=3)] == [1, 2, 3]


def test_correlate_requires_exact_owner_and_title() -> None:
    events = parse_creation_events(
        [
            _event(project_id="3", owner=OWNER, title="Indexer"),
            _event(project_id="4", owner=OWNER, title="indexer"),
            _event(project_id="5", owner="0xother", title="Indexer"),
        ]
    )
    assert correlate(OWNER, "Indexer", events) == 3
    assert correlate(OWNER, "Other", events) is None
    assert correlate("", "Indexer", events) is None


def test_correlate_ambiguity_keeps_first_and_logs(caplog) -> None:
    events = parse_creation_events(
        [
            _event(project_id="8", owner=OWNER, title="Dup"),
            _event(project_id="2", owner=OWNER, title="Dup"),
        ]
    )
    with caplog.at_level(logging.WARNING):
        assert correlate(OWNER, "Dup", events) == 8
    assert "ambiguous creation event correlation" in caplog.text


def test_find_event_for_identifier_prefers_exact() -> None:
    near = "0x" + "11" * 28 + "abcd0123"
    exact = "0x" + "22" * 28 + "abcd0123"
    events = parse_creation_events(
        [
            _event(project_id="1", project_object_id=near, owner=OWNER, title="Near"),
            _event(project_id="2", project_object_id=exact, owner=OWNER, title="Exact"),
        ]
    )
    hit = find_event_for_identifier(exact, events)
    assert hit is not None
    event, kind = hit
    assert kind == "exact"
    assert event.title == "Exact"

    assert find_event_for_identifier("0x" + "33" * 32, events) is None


def test_find_correlated_event_skips_events_contradicting_known_identity() -> None:
    second = CreationEvent(owner=OWNER, title="Same", numeric_key=2, object_id="0x" + "bb" * 32)
    first = CreationEvent(owner=OWNER, title="Same", numeric_key=1, object_id="0x" + "aa" * 32)
    keyless = CreationEvent(owner=OWNER, title="Same", numeric_key=None, object_id=None)

    assert find_correlated_event(OWNER, "Same", [second, first], numeric_key=1) is first
    assert find_correlated_event(OWNER, "Same", [second, first], object_id="0x" + "aa" * 32) is first
    assert find_correlated_event(OWNER, "Same", [second, first], numeric_key=3) is None
    assert find_correlated_event(OWNER, "Same", [second, keyless], numeric_key=3) is keyless
