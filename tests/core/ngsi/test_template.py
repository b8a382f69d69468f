# tests/core/ngsi/test_template.py
from __future__ import annotations

import pytest

from citydash.core.ngsi.template import (
    EMPTY_MARKER,
    MISSING,
    build_template_context,
    format_value,
    render_template,
    resolve_path,
)


class TestRenderTemplate:
    def test_entity_id_and_data_path(self):
        out = render_template(
            "{{entityId}} - {{data.name}}",
            {"entityId": "urn:x:1", "data": {"name": "Foo"}},
        )
        assert out == "urn:x:1 - Foo"

    def test_missing_path_renders_marker(self):
        assert render_template("{{data.missing}}", {"data": {}}) == EMPTY_MARKER

    def test_whitespace_inside_braces(self):
        assert render_template("{{ data.n }}", {"data": {"n": 3}}) == "3"

    def test_reserved_paths_fall_back_to_envelope(self):
        out = render_template(
            "{{entityType}}/{{entityId}}", {"id": "urn:x:2", "type": "Bench"}
        )
        assert out == "Bench/urn:x:2"

    def test_text_without_placeholders_is_untouched(self):
        assert render_template("plain text", {}) == "plain text"


class TestFormatValue:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, EMPTY_MARKER),
            (MISSING, EMPTY_MARKER),
            (True, "Yes"),
            (False, "No"),
            (7, "7"),
            (7.0, "7"),
            (21.456, "21.46"),
            ("text", "text"),
            ({"a": 1}, '{"a":1}'),
            ([1, 2], "[1,2]"),
        ],
    )
    def test_formatting(self, value, expected):
        assert format_value(value) == expected


class TestResolvePath:
    def test_list_index(self):
        assert resolve_path({"a": [{"b": 5}]}, "a.0.b") == 5

    def test_index_out_of_range(self):
        assert resolve_path({"a": [1]}, "a.3") is MISSING

    def test_walk_into_scalar(self):
        assert resolve_path({"a": 1}, "a.b") is MISSING

    def test_none_value_is_not_missing(self):
        assert resolve_path({"a": None}, "a") is None


def test_build_template_context_projects_attributes():
    entity = {
        "id": "urn:ngsi-ld:Bench:1",
        "type": "Bench",
        "status": {"type": "Property", "value": "free"},
    }
    context = build_template_context(entity)

    assert context == {
        "entityId": "urn:ngsi-ld:Bench:1",
        "entityType": "Bench",
        "data": {"status": "free"},
    }
    assert render_template("{{entityType}}: {{data.status}}", context) == "Bench: free"
