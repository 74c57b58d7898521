from __future__ import annotations

from datetime import UTC, datetime

import pydantic
import pytest

import marc21
from biblio import (
    RULES,
    BibliographicRecord,
    Policy,
    compose_searchable_text,
    extract_record,
    is_valid_isbn,
    parse_year,
)
from marc_builder import build_record, data_field


def _field(tag: str, *subfields: tuple[str, str]) -> marc21.Field:
    return marc21.Field(
        tag=tag,
        indicator1=" ",
        indicator2=" ",
        subfields=[marc21.SubField(code=code, data=data) for code, data in subfields],
    )


def test_title_joins_main_title_and_subtitle() -> None:
    record = extract_record([_field("245", ("a", "The Great Book"), ("b", "a novel"), ("c", "by J. Smith"))])
    assert record.title == "The Great Book : a novel"


def test_title_first_field_wins() -> None:
    record = extract_record([_field("245", ("c", "anonymous")), _field("245", ("a", "Second")), _field("245", ("a", "Third"))])
    assert record.title == "Second"


def test_author_strips_trailing_commas_only() -> None:
    record = extract_record([_field("100", ("a", "Smith, John,"), ("d", "1950-"))])
    assert record.author == "Smith, John"


def test_author_first_field_across_tags() -> None:
    record = extract_record([_field("110", ("a", "Acme Corp")), _field("100", ("a", "Smith, John"))])
    assert record.author == "Acme Corp"


def test_publisher_and_year_from_imprint() -> None:
    fields = [
        _field("260", ("a", "New York"), ("b", "Penguin Books,"), ("c", "c1998")),
        _field("264", ("b", "Other House"), ("c", "2005")),
    ]
    record = extract_record(fields)
    assert record.publisher == "Penguin Books"
    assert record.publication_year == 1998


def test_year_keeps_scanning_past_rejected_dates() -> None:
    fields = [
        _field("260", ("c", "circa 99")),
        _field("264", ("c", "0999"), ("c", "[2001?]")),
    ]
    assert extract_record(fields).publication_year == 2001


@pytest.mark.parametrize(("raw", "expected"), [
    ("c1998", 1998),
    ("circa 99", None),
    ("1000", 1000),
    ("2999", 2999),
    ("3000", None),
    ("n.d", None),
])
def test_parse_year(raw: str, expected: int | None) -> None:
    assert parse_year(raw) == expected


def test_isbn_drops_qualifier_and_keeps_hyphens() -> None:
    record = extract_record([_field("020", ("a", "0-13-468599-7 (pbk.)"))])
    assert record.isbn == "0-13-468599-7"


def test_isbn_skips_invalid_values() -> None:
    fields = [
        _field("020", ("z", "9780000000000"), ("a", "12345")),
        _field("020", ("a", "978-0-596-52068-7 (hardcover)")),
    ]
    assert extract_record(fields).isbn == "978-0-596-52068-7"


@pytest.mark.parametrize(("isbn", "valid"), [
    ("0-8044-2957-X", True),
    ("080442957x", True),
    ("080442957", False),
    ("08044X9571", False),
    ("978 0 596 52068 7", True),
    ("978059652068X", False),
])
def test_is_valid_isbn(isbn: str, valid: bool) -> None:
    assert is_valid_isbn(isbn) is valid


def test_subjects_accumulate_with_duplicates() -> None:
    fields = [
        _field("650", ("a", "Cooking"), ("x", "History")),
        _field("651", ("a", "France")),
        _field("653", ("a", "Cooking")),
    ]
    assert extract_record(fields).subjects == ("Cooking", "France", "Cooking")


def test_description_and_language_take_first_value() -> None:
    fields = [
        _field("041", ("a", "eng"), ("a", "fre")),
        _field("520", ("a", "First summary")),
        _field("520", ("a", "Second summary")),
    ]
    record = extract_record(fields)
    assert record.language == "eng"
    assert record.description == "First summary"


def test_unmapped_tags_are_ignored() -> None:
    record = extract_record([_field("500", ("a", "General note")), _field("245", ("a", "Title"))])
    assert record.model_dump() == BibliographicRecord(title="Title", searchable_text="Title").model_dump()


def test_rule_table_policies() -> None:
    assert RULES["650"][0].policy is Policy.ACCUMULATE
    assert RULES["245"][0].per_field is True
    assert {rule.attribute for rule in RULES["264"]} == {"publisher", "publication_year"}
    assert RULES["100"] is RULES["111"]


def test_searchable_text_order_and_empty_parts() -> None:
    record = BibliographicRecord(
        title="Title",
        author="Author",
        description="About things",
        subjects=["One", "Two"],
        language="eng",
    )
    assert compose_searchable_text(record) == "Title Author About things One Two"
    assert compose_searchable_text(BibliographicRecord()) == ""


def test_extract_record_sets_searchable_text() -> None:
    record = extract_record([_field("245", ("a", "Title")), _field("260", ("b", "Pub"))])
    assert record.searchable_text == "Title Pub"


def test_extract_from_decoded_bytes() -> None:
    data = build_record([
        ("100", data_field(("a", "Smith, John,"), indicators=b"1 ")),
        ("245", data_field(("a", "The Great Book :"), ("b", "a novel /"), ("c", "by John Smith."))),
        ("650", data_field(("a", "Fiction."))),
    ])

    first = extract_record(marc21.parse_record(data).fields)
    second = extract_record(marc21.parse_record(data).fields)

    assert first.title == "The Great Book : a novel"
    assert first.author == "Smith, John"
    assert first.subjects == ("Fiction",)
    assert first == second


def test_record_is_frozen() -> None:
    record = BibliographicRecord(title="Title")
    with pytest.raises(pydantic.ValidationError):
        record.title = "Other"


def test_to_document_uses_index_field_names() -> None:
    stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    record = BibliographicRecord(title="Title", subjects=["A"]).stamped(stamp)

    document = record.to_document()

    assert document["title"] == "Title"
    assert document["controlNumber"] == ""
    assert document["searchableText"] == ""
    assert document["subjects"] == ["A"]
    assert document["indexed_at"] == "2026-01-02T03:04:05+00:00"
    assert "publicationYear" not in document
    assert "embedding" not in document


def test_with_embedding_returns_copy() -> None:
    record = BibliographicRecord(title="Title", publication_year=1998)
    embedded = record.with_embedding([0.5, 0.25])

    assert record.embedding is None
    assert embedded.embedding == (0.5, 0.25)
    assert embedded.to_document()["publicationYear"] == 1998
    assert embedded.to_document()["embedding"] == [0.5, 0.25]


def test_subjects_cannot_be_extended_after_extraction() -> None:
    record = extract_record([_field("650", ("a", "Cooking"))])

    with pytest.raises(AttributeError):
        record.subjects.append("Smuggled")
    assert record.to_document()["subjects"] == ["Cooking"]


def test_empty_embedding_is_left_out_of_document() -> None:
    assert BibliographicRecord(title="Title").with_embedding([]).embedding is None
    assert "embedding" not in BibliographicRecord(title="Title", embedding=[]).to_document()
