"""Tests for flashmark.application.parser."""

from flashmark.application.parser import (
    extract_deck_path,
    hash_content,
    inject_ids,
    iter_records,
    parse,
)


# ---------- Parsing ----------


def test_parse_well_formed_blocks_in_order():
    text = "ID: 1\nQ: First?\nA: One\n\nID: 2\nQ: Second?\nA: Two\n\nID: 3\nQ: Third?\nA: Three\n"
    result = parse(text)
    assert [r.id for r in result.records] == [1, 2, 3]
    assert [r.question for r in result.records] == ["First?", "Second?", "Third?"]
    assert [r.answer for r in result.records] == ["One", "Two", "Three"]
    assert result.warnings == []


def test_parse_preserves_blank_lines_and_fenced_code_in_answer():
    text = (
        "ID: 7\n"
        "Q: Show a loop\n"
        "A: Like this:\n"
        "\n"
        "```python\n"
        "for i in range(3):\n"
        "\n"
        "    print(i)\n"
        "```\n"
        "\n"
        "- nested\n"
        "  - list\n"
    )
    record = parse(text).records[0]
    assert record.answer == (
        "Like this:\n\n```python\nfor i in range(3):\n\n    print(i)\n```\n\n- nested\n  - list"
    )


def test_marker_inside_fence_ends_the_field():
    text = "Q: What does this print?\nA: This:\n```\nQ: next question\nA: next answer\n```\n"
    result = parse(text)
    assert [r.question for r in result.records] == ["What does this print?", "next question"]
    assert result.records[0].answer == "This:\n```"
    assert result.records[1].answer == "next answer\n```"


def test_unclosed_fence_does_not_hide_following_blocks():
    text = (
        "ID: 1\nQ: q1\nA: see\n```\ncode\n\n"
        "ID: 2\nQ: q2\nA: a2\n\n"
        "ID: 3\nQ: q3\nA: a3\n"
    )
    result = parse(text)
    assert [r.id for r in result.records] == [1, 2, 3]
    assert result.records[0].answer == "see\n```\ncode"
    assert result.warnings == []


def test_record_without_id_is_pending():
    result = parse("Q: New card\nA: Fresh\n")
    assert len(result.pending) == 1
    assert result.pending[0].id is None
    assert result.pending[0].line_number == 1


def test_missing_answer_is_warning_without_affecting_neighbours():
    text = "ID: 1\nQ: ok\nA: yes\n\nID: 2\nQ: no answer here\n\nID: 3\nQ: also ok\nA: yes\n"
    result = parse(text)
    assert [r.id for r in result.records] == [1, 3]
    assert len(result.warnings) == 1
    assert result.warnings[0].line == 5
    assert "missing answer" in result.warnings[0].message


def test_missing_question_is_warning():
    result = parse("A: orphan answer\n")
    assert result.records == []
    assert "missing question" in result.warnings[0].message


def test_trailing_metadata_goes_to_answer():
    result = parse("ID: 4\nQ: q\nA: a\nTags: rust, memory\n")
    assert result.records[0].answer == "a\nTags: rust, memory"


def test_fields_trimmed_only_at_flush():
    result = parse("Q:   spaced   \nA:\n  indented line\n    deeper\n\n")
    assert result.records[0].question == "spaced"
    assert result.records[0].answer == "indented line\n    deeper"


def test_crlf_input():
    result = parse("ID: 9\r\nQ: Windows?\r\nA: Yes\r\n")
    assert result.records[0].id == 9
    assert result.records[0].answer == "Yes"


def test_invalid_and_duplicate_ids():
    text = "ID: abc\nQ: q\nA: a\nID: 5\nQ: q\nA: a\nID: 5\nQ: dup\nA: a\n"
    result = parse(text)
    assert [r.id for r in result.records] == [5]
    assert len(result.warnings) == 2
    assert "invalid ID" in result.warnings[0].message
    assert "duplicate ID 5" in result.warnings[1].message


def test_iter_records_is_restartable_and_idempotent():
    text = "ID: 1\nQ: a\nA: b\nQ: c\nA: d\n"
    assert list(iter_records(text)) == list(iter_records(text))
    assert parse(text).records == parse(text).records


def test_empty_input():
    result = parse("")
    assert result.records == []
    assert result.warnings == []


# ---------- ID injection ----------


def test_inject_ids_inserts_above_pending_record():
    text = "ID: 1\nQ: a\nA: b\n\nQ: new\nA: card\n"
    assert inject_ids(text, {5: 42}) == "ID: 1\nQ: a\nA: b\n\nID: 42\nQ: new\nA: card\n"


def test_inject_ids_fills_empty_marker():
    text = "ID:\nQ: new\nA: card"
    assert inject_ids(text, {1: 3}) == "ID: 3\nQ: new\nA: card"


def test_inject_ids_keeps_crlf():
    text = "Q: new\r\nA: card\r\n"
    assert inject_ids(text, {1: 8}) == "ID: 8\r\nQ: new\r\nA: card\r\n"


def test_injected_text_parses_with_ids():
    text = "Q: one\nA: 1\n\nQ: two\nA: 2\n"
    records = parse(inject_ids(text, {1: 10, 4: 11})).records
    assert [(r.id, r.question) for r in records] == [(10, "one"), (11, "two")]


# ---------- Helpers ----------


def test_hash_content_is_sha256_hex():
    assert hash_content("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_extract_deck_path():
    assert extract_deck_path("rust/ownership.md") == "rust"
    assert extract_deck_path("prog/rust/basics.md") == "prog/rust"
    assert extract_deck_path("single.md") == "single"
    assert extract_deck_path("prog\\py\\x.md") == "prog/py"
