# tests/test_document.py
"""
Config document model: managed blocks, sections and byte-exact rendering.
"""

import pytest

from apps.reconcile.document import ConfigDocument, parse, render
from shared.exceptions import ParseError, ValidationError

HAND_WRITTEN = """[global]
type=global
user_agent=PBX

; reception phone, do not touch
[2001]
type=endpoint
context=from-internal
"""

BLOCK_TEXT = "[1001]\ntype=endpoint\ncontext=from-internal\n"


def test_round_trip_is_byte_exact():
    """Parsing and rendering an untouched file gives back the same bytes"""
    assert render(parse(HAND_WRITTEN)) == HAND_WRITTEN


def test_round_trip_keeps_missing_trailing_newline():
    text = "[general]\nstatic=yes"
    assert render(parse(text)) == text


def test_round_trip_with_managed_block():
    text = (
        "; BEGIN MANAGED - Extension 1001\n"
        "[1001]\n"
        "type=endpoint\n"
        "; END MANAGED - Extension 1001\n"
        "\n"
        + HAND_WRITTEN
    )
    document = parse(text)
    assert document.managed_labels() == ["Extension 1001"]
    assert render(document) == text


def test_empty_document_renders_empty():
    assert render(parse("")) == ""


def test_new_block_goes_before_first_hand_written_section():
    document = parse("; header comment\n\n[global]\ntype=global\n")
    assert document.replace_managed_block("Extension 1001", BLOCK_TEXT) is True

    assert document.render() == (
        "; header comment\n"
        "\n"
        "; BEGIN MANAGED - Extension 1001\n"
        "[1001]\n"
        "type=endpoint\n"
        "context=from-internal\n"
        "; END MANAGED - Extension 1001\n"
        "\n"
        "[global]\n"
        "type=global\n"
    )


def test_comment_above_header_stays_attached():
    document = parse("; globals\n[global]\ntype=global\n")
    document.replace_managed_block("Transports", "[transport-udp]\ntype=transport\n")

    lines = document.render().splitlines()
    assert lines.index("; globals") == lines.index("[global]") - 1
    assert lines[0] == "; BEGIN MANAGED - Transports"


def test_replace_only_touches_its_own_block():
    """Text outside the block survives any number of replacements unchanged"""
    document = parse(HAND_WRITTEN)
    document.replace_managed_block("Extension 1001", BLOCK_TEXT)
    document.replace_managed_block("Extension 1001", "[1001]\ntype=endpoint\ncontext=sales\n")

    rendered = document.render()
    assert HAND_WRITTEN in rendered
    assert "context=sales" in rendered
    assert "context=from-internal\n; END" not in rendered
    assert document.get_managed_block("Extension 1001").body == [
        "[1001]", "type=endpoint", "context=sales"
    ]


def test_replace_with_identical_text_reports_no_change():
    document = parse(HAND_WRITTEN)
    document.replace_managed_block("Extension 1001", BLOCK_TEXT)
    before = document.render()

    assert document.replace_managed_block("Extension 1001", BLOCK_TEXT) is False
    assert document.render() == before


def test_remove_leaves_no_residue():
    document = parse(HAND_WRITTEN)
    document.replace_managed_block("Extension 1001", BLOCK_TEXT)

    reparsed = parse(document.render())
    assert reparsed.remove_managed_block("Extension 1001") is True
    assert reparsed.render() == HAND_WRITTEN


@pytest.mark.parametrize("original", ["", "; only comments\n", "; trailing blank\n\n", "\n"])
def test_remove_after_append_at_end_of_file(original):
    """Files without sections get blocks appended; removal restores them exactly"""
    document = parse(original)
    document.replace_managed_block("Outbound Routes", "[from-internal]\nexten => _9X.,1,NoOp()\n")
    assert document.managed_labels() == ["Outbound Routes"]

    document.remove_managed_block("Outbound Routes")
    assert document.render() == original


def test_remove_middle_block_keeps_neighbours_separated():
    document = parse("")
    document.replace_managed_block("Dialplan Rules", "[from-internal]\n")
    document.replace_managed_block("Outbound Routes", "[outbound]\n")
    document.replace_managed_block("Extra", "[extra]\n")

    document.remove_managed_block("Outbound Routes")
    assert document.render() == (
        "; BEGIN MANAGED - Dialplan Rules\n"
        "[from-internal]\n"
        "; END MANAGED - Dialplan Rules\n"
        "\n"
        "; BEGIN MANAGED - Extra\n"
        "[extra]\n"
        "; END MANAGED - Extra\n"
    )


def test_remove_missing_block_returns_false():
    document = parse(HAND_WRITTEN)
    assert document.remove_managed_block("Extension 9999") is False
    assert document.render() == HAND_WRITTEN


def test_sections_are_tagged_with_their_block():
    document = parse(HAND_WRITTEN)
    document.replace_managed_block("Extension 1001", BLOCK_TEXT)

    sections = {section.name: section for section in document.sections()}
    assert sections["1001"].managed_label == "Extension 1001"
    assert sections["2001"].managed_label is None
    assert sections["2001"].get("context") == "from-internal"
    assert document.unmanaged_section_names() == ["global", "2001"]


def test_sections_do_not_run_across_block_boundary():
    text = (
        "[general]\n"
        "a=1\n"
        "; BEGIN MANAGED - Extension 1001\n"
        "b=2\n"
        "; END MANAGED - Extension 1001\n"
        "c=3\n"
    )
    general = parse(text).find_section("general")
    assert general.options == [("a", "1")]


def test_find_section_by_type():
    text = "[1001]\ntype=endpoint\n\n[1001]\ntype=aor\nmax_contacts=1\n"
    document = parse(text)
    assert len(document.find_sections("1001")) == 2
    assert document.find_section("1001", "aor").get("max_contacts") == "1"


def test_dialplan_arrow_options_are_split():
    section = parse("[from-internal]\nexten => 100,1,Dial(PJSIP/100)\n").find_section("from-internal")
    assert section.options == [("exten", "100,1,Dial(PJSIP/100)")]


def test_remove_unmanaged_sections_keeps_next_comment():
    document = parse(HAND_WRITTEN + "\n; conference room\n[3001]\ntype=endpoint\n")
    assert document.remove_unmanaged_sections(["2001"]) == 1

    rendered = document.render()
    assert "[2001]" not in rendered
    assert "reception phone" not in rendered
    assert "user_agent=PBX\n\n; conference room\n[3001]" in rendered


@pytest.mark.parametrize("text, message", [
    ("; BEGIN MANAGED - A\n; BEGIN MANAGED - B\n; END MANAGED - B\n; END MANAGED - A\n", "line 2"),
    ("; BEGIN MANAGED - A\n; END MANAGED - B\n", "overlaps"),
    ("[general]\n; END MANAGED - A\n", "without a beginning"),
    ("; BEGIN MANAGED - A\n[x]\n", "never closed"),
    ("; BEGIN MANAGED - A\n; END MANAGED - A\n; BEGIN MANAGED - A\n; END MANAGED - A\n", "duplicate"),
])
def test_malformed_blocks_are_rejected(text, message):
    with pytest.raises(ParseError) as excinfo:
        ConfigDocument.parse(text)
    assert message in str(excinfo.value)


@pytest.mark.parametrize("label", ["", "  ", "Two\nLines", " padded", "BEGIN MANAGED - x"])
def test_invalid_labels_are_rejected(label):
    with pytest.raises(ValidationError):
        parse("").replace_managed_block(label, "[x]\n")
