"""
Tests for localization tables and the fallback chain.
"""

import pytest

from pyrhoe.core.localization import Localization, content_key, flatten_localization


@pytest.fixture
def table() -> Localization:
    return Localization(
        languages={
            "en": {"n1.text": "Hello", "n2.text": "Bye"},
            "hi": {"n1.text": "Namaste"},
        },
        defaults={"n1.text": "Hi (default)", "n3.text": "Only default"},
        default_language="en",
    )


def test_content_key_format():
    assert content_key("n1", "text") == "n1.text"


def test_flatten_flat_form():
    assert flatten_localization({"es": {"n1.text": "Hola"}}) == {"es": {"n1.text": "Hola"}}


def test_flatten_nested_builder_form():
    flat = flatten_localization(
        {
            "es": {
                "n1": {"text": ["Hola", "ignored"], "quick_replies": ["Si", "No"]},
                "n2": {"attachments": []},
            }
        }
    )

    assert flat == {"es": {"n1.text": "Hola", "n1.quick_replies": "Si"}}


def test_flatten_skips_non_text_values():
    flat = flatten_localization({"es": {"n1.text": 3, "n2.text": None}, "fr": "broken"})

    assert flat == {"es": {}}


def test_flatten_empty_block():
    assert flatten_localization(None) == {}
    assert flatten_localization({}) == {}


def test_requested_language_wins(table):
    assert table.localize("hi", "n1.text") == "Namaste"


def test_falls_back_to_default_language(table):
    assert table.localize("hi", "n2.text") == "Bye"
    assert table.localize("fr", "n1.text") == "Hello"


def test_falls_back_to_stored_default(table):
    assert table.localize("hi", "n3.text") == "Only default"


def test_unknown_key_returns_key(table):
    assert table.localize("hi", "nope.text") == "nope.text"


def test_no_language_uses_default_language(table):
    assert table.localize(None, "n2.text") == "Bye"


def test_without_default_language():
    table = Localization(languages={"hi": {"k": "v"}}, defaults={"d": "default"})

    assert table.localize("hi", "k") == "v"
    assert table.localize("en", "k") == "k"
    assert table.localize(None, "d") == "default"


def test_table_is_read_only(table):
    assert "hi" in table
    assert "de" not in table
    with pytest.raises(TypeError):
        table.languages["hi"]["n1.text"] = "changed"
    with pytest.raises(TypeError):
        table.defaults["n1.text"] = "changed"
