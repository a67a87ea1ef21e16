import xml.etree.ElementTree as ET

from ficarchive.sanitizer import to_markdown, to_xhtml


def _is_well_formed(markup: str) -> bool:
    ET.fromstring(f"<root>{markup}</root>")
    return True


def test_void_elements_are_self_closed() -> None:
    assert to_xhtml("<p>One<br>Two</p><hr>") == "<p>One<br/>Two</p><hr/>"


def test_text_and_attributes_are_escaped_and_quoted() -> None:
    assert to_xhtml("<p>Fish & chips</p>") == "<p>Fish &amp; chips</p>"
    assert to_xhtml("<p align=center>x</p>") == '<p align="center">x</p>'


def test_named_entities_become_characters() -> None:
    assert to_xhtml("<p>a&nbsp;b</p>") == "<p>a\xa0b</p>"


def test_output_of_loose_html_parses_as_xml() -> None:
    loose = "<p>Line one<br>Line <b>two<i>three</b></i><img src=x.png></p><hr><p>5 < 6 && 7 > 6</p>"
    assert _is_well_formed(to_xhtml(loose))


def test_empty_fragment() -> None:
    assert to_xhtml("") == ""
    assert to_markdown("") == ""


def test_markdown_uses_atx_headings_and_dash_bullets() -> None:
    out = to_markdown("<h2>Notes</h2><ul><li>alpha</li><li>beta</li></ul><p>Some <b>bold</b> text</p>")
    assert out.startswith("## Notes")
    assert "- alpha" in out
    assert "- beta" in out
    assert "**bold**" in out
    assert out.endswith("\n")


def test_control_characters_are_removed() -> None:
    out = to_xhtml("<p>a\x0cb\x1fc</p>")
    assert _is_well_formed(out)
    assert not any(ord(ch) < 0x20 for ch in out)
    assert ET.fromstring(out).text.replace(" ", "") == "abc"


def test_prefixed_word_tags_are_unwrapped() -> None:
    out = to_xhtml("<p>Word<o:p></o:p></p><p o:title=t class=x>Doc<st1:place>Paris</st1:place></p>")
    assert _is_well_formed(out)
    assert "o:" not in out and "st1:" not in out
    assert "<p>Word</p>" in out
    assert '<p class="x">DocParis</p>' in out


def test_scripts_and_styles_are_dropped() -> None:
    out = to_xhtml("<p>x<script>if (a<b) {}</script></p><p>y<style>p > b {}</style></p>")
    assert _is_well_formed(out)
    assert out == "<p>x</p><p>y</p>"


def test_comments_are_dropped() -> None:
    assert to_xhtml("<p>a</p><!-- one -- two --><p>b</p>") == "<p>a</p><p>b</p>"
