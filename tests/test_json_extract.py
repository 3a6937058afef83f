import pytest

from enrichment_orchestrator.json_extract import first_balanced_object, parse_json_content


def test_parses_plain_json():
    assert parse_json_content('  {"a": 1}  ') == {"a": 1}


def test_parses_fenced_json():
    text = '```json\n{"seo": {"title": "x"}}\n```'
    assert parse_json_content(text) == {"seo": {"title": "x"}}


def test_parses_first_object_embedded_in_prose():
    text = 'Here is the data: {"a": {"b": 2}} and another {"c": 3}. Hope it helps.'
    assert parse_json_content(text) == {"a": {"b": 2}}


def test_braces_inside_strings_do_not_unbalance():
    text = 'Result: {"note": "use {curly} braces \\" here", "n": 1} done'
    assert first_balanced_object(text) == '{"note": "use {curly} braces \\" here", "n": 1}'
    assert parse_json_content(text)["n"] == 1


def test_bare_json_values_are_accepted():
    assert parse_json_content('"just a title"') == "just a title"
    assert parse_json_content("[1, 2]") == [1, 2]


def test_unparseable_content_raises_value_error():
    with pytest.raises(ValueError):
        parse_json_content("no json here at all")
    with pytest.raises(ValueError):
        parse_json_content("prefix {not: valid} suffix")
