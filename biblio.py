"""Projection of decoded MARC fields onto a flat bibliographic record."""

from __future__ import annotations

import enum
import re
import typing
from datetime import UTC, datetime

import pydantic

from marc21 import Field

TITLE_SEPARATOR = " : "
MIN_PUBLICATION_YEAR = 1000
MAX_PUBLICATION_YEAR = 3000
EMBEDDING_DIMS = 768
YEAR_PATTERN = re.compile(r"[0-9]{4}")


class BibliographicRecord(pydantic.BaseModel):
    """Semantic view of one MARC record, serialized with the index field names."""

    model_config = pydantic.ConfigDict(frozen=True, populate_by_name=True)

    control_number: str = pydantic.Field(default="", alias="controlNumber")
    title: str = ""
    author: str = ""
    publisher: str = ""
    publication_year: int | None = pydantic.Field(default=None, alias="publicationYear")
    isbn: str = ""
    subjects: tuple[str, ...] = ()
    description: str = ""
    language: str = ""
    format: str = ""
    searchable_text: str = pydantic.Field(default="", alias="searchableText")
    embedding: tuple[float, ...] | None = None
    indexed_at: datetime | None = None

    def with_embedding(self, embedding: list[float] | None) -> BibliographicRecord:
        return self.model_copy(update={"embedding": tuple(embedding) if embedding else None})

    def stamped(self, when: datetime | None = None) -> BibliographicRecord:
        return self.model_copy(update={"indexed_at": when or datetime.now(UTC)})

    def to_document(self) -> dict[str, typing.Any]:
        document = self.model_dump(by_alias=True, exclude={"indexed_at"}, exclude_none=True)
        document["subjects"] = list(self.subjects)
        if self.embedding:
            document["embedding"] = list(self.embedding)
        else:
            document.pop("embedding", None)
        document["indexed_at"] = self.indexed_at.isoformat() if self.indexed_at else None
        return document


class Policy(str, enum.Enum):
    FIRST = "first"
    ACCUMULATE = "accumulate"


class Rule(typing.NamedTuple):
    """How one tag feeds one attribute.

    ``per_field`` rules hand every matching subfield of a field to ``convert``
    at once; the others convert subfields one at a time. ``convert`` returns
    ``None`` to reject a value, in which case scanning continues.
    """

    attribute: str
    codes: str
    policy: Policy
    convert: typing.Callable[[typing.Any], typing.Any]
    per_field: bool = False


def join_title(parts: list[str]) -> str | None:
    return TITLE_SEPARATOR.join(parts).strip() or None


def clean_author(value: str) -> str | None:
    return value.strip().rstrip(",") or None


def clean_publisher(value: str) -> str | None:
    return value.strip().rstrip(",:.").strip() or None


def parse_year(value: str) -> int | None:
    match = YEAR_PATTERN.search(value)
    if match is None:
        return None
    year = int(match.group())
    if not MIN_PUBLICATION_YEAR <= year < MAX_PUBLICATION_YEAR:
        return None
    return year


def is_valid_isbn(value: str) -> bool:
    compact = value.replace("-", "").replace(" ", "")
    if len(compact) == 13:
        return compact.isdigit()
    if len(compact) == 10:
        return compact[:9].isdigit() and (compact[9].isdigit() or compact[9] in "Xx")
    return False


def clean_isbn(value: str) -> str | None:
    isbn = value.split("(", 1)[0].strip()
    return isbn if is_valid_isbn(isbn) else None


def clean_subject(value: str) -> str | None:
    return value.removesuffix(".")


def keep(value: str) -> str | None:
    return value or None


_PUBLICATION_RULES = (
    Rule("publisher", "b", Policy.FIRST, clean_publisher),
    Rule("publication_year", "c", Policy.FIRST, parse_year),
)
_AUTHOR_RULES = (Rule("author", "a", Policy.FIRST, clean_author),)
_SUBJECT_RULES = (Rule("subjects", "a", Policy.ACCUMULATE, clean_subject),)

RULES: dict[str, tuple[Rule, ...]] = {
    "245": (Rule("title", "ab", Policy.FIRST, join_title, per_field=True),),
    "100": _AUTHOR_RULES,
    "110": _AUTHOR_RULES,
    "111": _AUTHOR_RULES,
    "260": _PUBLICATION_RULES,
    "264": _PUBLICATION_RULES,
    "020": (Rule("isbn", "a", Policy.FIRST, clean_isbn),),
    "650": _SUBJECT_RULES,
    "651": _SUBJECT_RULES,
    "653": _SUBJECT_RULES,
    "520": (Rule("description", "a", Policy.FIRST, keep),),
    "041": (Rule("language", "a", Policy.FIRST, keep),),
}


def apply_rule(rule: Rule, field: Field, values: dict[str, typing.Any]) -> None:
    if rule.policy is Policy.FIRST and rule.attribute in values:
        return

    matches = [subfield.data for subfield in field.subfields if subfield.code in rule.codes]
    if rule.per_field:
        candidates = [matches] if matches else []
    else:
        candidates = matches

    for candidate in candidates:
        value = rule.convert(candidate)
        if value is None:
            continue
        if rule.policy is Policy.ACCUMULATE:
            values.setdefault(rule.attribute, []).append(value)
            continue
        values[rule.attribute] = value
        return


def extract_record(fields: typing.Iterable[Field], rules: dict[str, tuple[Rule, ...]] = RULES) -> BibliographicRecord:
    """Build a record from fields in directory order.

    Single-valued attributes keep the first accepted value; subjects collect
    every match in order.
    """
    values: dict[str, typing.Any] = {}
    for field in fields:
        for rule in rules.get(field.tag, ()):
            apply_rule(rule, field, values)

    record = BibliographicRecord(**values)
    return record.model_copy(update={"searchable_text": compose_searchable_text(record)})


def compose_searchable_text(record: BibliographicRecord) -> str:
    parts = [record.title, record.author, record.publisher, record.description, " ".join(record.subjects)]
    return " ".join(part for part in parts if part)
