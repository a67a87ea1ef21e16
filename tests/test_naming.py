from datetime import datetime

import pytest

from ficarchive.naming import archive_name, canonical_story_url, chapter_path, parse_story_id, safe_filename


def test_parse_story_id_accepts_ids_and_urls() -> None:
    assert parse_story_id("123") == "123"
    assert parse_story_id(" 123 ") == "123"
    assert parse_story_id("https://www.fanfiction.net/s/123/4/Some-Story") == "123"
    assert parse_story_id("https://m.fanfiction.net/s/99") == "99"


def test_parse_story_id_rejects_other_urls() -> None:
    with pytest.raises(ValueError):
        parse_story_id("https://www.fanfiction.net/u/42/Writer")


def test_canonical_story_url_points_at_chapter_one() -> None:
    assert canonical_story_url("123") == "https://www.fanfiction.net/s/123/1/"
    assert (
        canonical_story_url("https://www.fanfiction.net/s/123/7/Some-Story")
        == "https://www.fanfiction.net/s/123/1/Some-Story"
    )
    assert canonical_story_url("https://www.fanfiction.net/s/123/7/?x=1") == "https://www.fanfiction.net/s/123/1/"
    assert canonical_story_url("https://www.fanfiction.net/s/123", "http://mirror.test/") == "http://mirror.test/s/123/1/"


def test_canonical_story_url_rejects_non_story() -> None:
    with pytest.raises(ValueError):
        canonical_story_url("https://www.fanfiction.net/u/42/")


def test_safe_filename_replaces_reserved_characters() -> None:
    assert safe_filename("My/Story?") == "My-Story-"
    assert safe_filename('a/b\\c?d%e*f:g|h"i<j>k') == "a-b-c-d-e-f-g-h-i-j-k"
    assert safe_filename("Tom & Jerry", "epub") == "Tom & Jerry.epub"
    assert safe_filename("   ", "md") == "Untitled.md"


def test_archive_name_uses_timestamp() -> None:
    assert archive_name(now=datetime(2024, 1, 2, 3, 4, 5)) == "ffn_2024-01-02-03-04-05.zip"


def test_chapter_path() -> None:
    assert chapter_path("123", 2) == "/s/123/2/"
