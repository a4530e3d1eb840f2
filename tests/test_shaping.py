"""Tests for row shaping and value renderers."""

from datetime import date
from decimal import Decimal

import pytest

from datatable_query.config import ActionSpec, FormatSpec, FormulaSpec, TableConfigBuilder
from datatable_query.security import (
    ClientInfo,
    HtmlSanitizer,
    MemoryAuditSink,
    SecurityEventType,
)
from datatable_query.shaping import (
    MISSING_FILE_MARKER,
    ColumnShaper,
    FormulaEvaluator,
    ImageRenderer,
    format_number,
    insert_formula_columns,
    render_actions,
    row_attributes,
)


def _config(name="items", **layer):
    return TableConfigBuilder(name).apply(layer).build()


def _shape_one(config, row, **kwargs):
    start = kwargs.pop("start", 0)
    client = kwargs.pop("client", None)
    return ColumnShaper(config, **kwargs).shape([row], client, start)[0]


class TestNumberFormat:
    def test_dot_separator(self):
        spec = FormatSpec(field="total", decimals=2, separator=".")

        assert format_number(1234567.891, spec) == "1,234,567.89"

    def test_comma_separator_swaps_grouping(self):
        spec = FormatSpec(field="total", decimals=2, separator=",")

        assert format_number("1234567.891", spec) == "1.234.567,89"

    def test_integer_grouping(self):
        assert format_number(1500, FormatSpec(field="qty")) == "1,500"

    def test_empty_and_non_numeric(self):
        spec = FormatSpec(field="total", decimals=2)

        assert format_number("", spec) is None
        assert format_number(None, spec) is None
        assert format_number("n/a", spec) == "n/a"


class TestFormulas:
    def test_evaluates_arithmetic(self):
        formula = FormulaSpec(name="line_total", logic="(price * qty) - 1", field_lists=("price", "qty"))

        assert FormulaEvaluator(formula).evaluate({"price": 2.5, "qty": 4}) == Decimal("9.0")

    def test_missing_input_and_division_by_zero_give_none(self):
        formula = FormulaSpec(name="ratio", logic="price / qty", field_lists=("price", "qty"))
        evaluator = FormulaEvaluator(formula)

        assert evaluator.evaluate({"price": 3, "qty": 0}) is None
        assert evaluator.evaluate({"price": 3}) is None

    def test_undeclared_field_is_rejected(self):
        formula = FormulaSpec(name="bad", logic="price * secret", field_lists=("price",))

        with pytest.raises(ValueError):
            FormulaEvaluator(formula)

    def test_placement(self):
        formulas = [
            FormulaSpec(name="line_total", logic="price * qty", field_lists=(), location="after", after="price"),
            FormulaSpec(name="rank", logic="1", field_lists=(), location="first"),
            FormulaSpec(name="tail", logic="2", field_lists=()),
        ]

        assert insert_formula_columns(["price", "qty"], formulas) == [
            "rank",
            "price",
            "line_total",
            "qty",
            "tail",
        ]

    def test_shaped_formula_column(self):
        config = _config(
            columns=["name", "price", "qty"],
            formula=[
                {"name": "line_total", "logic": "price * qty", "field_lists": ["price", "qty"], "node_after": "price"}
            ],
        )
        shaper = ColumnShaper(config)

        assert shaper.display_columns() == ["name", "price", "line_total", "qty"]
        row = shaper.shape([{"id": 1, "name": "pen", "price": 2.5, "qty": 4}])[0]
        assert row["line_total"] == 10

    def test_formatted_formula_column(self):
        config = _config(
            columns=["price", "qty"],
            formulas=[{"name": "line_total", "logic": "price * qty", "field_lists": ["price", "qty"]}],
            formats=[{"field": "line_total", "decimals": 2, "separator": ","}],
        )

        row = _shape_one(config, {"price": 250, "qty": 10})

        assert row["line_total"] == "2.500,00"


class TestStatusLabels:
    def test_builtin_and_configured_labels(self):
        config = _config(
            columns=["flag_status", "active", "request_status", "state"],
            status_labels={"state": {1: "Open", "2": "Closed"}},
        )

        row = _shape_one(config, {"id": 1, "flag_status": 0, "active": 1, "request_status": 2, "state": 2})

        assert row["flag_status"] == "Super Admin <sup>( root )</sup>"
        assert row["active"] == "Yes"
        assert row["request_status"] == "Blocked"
        assert row["state"] == "Closed"

    def test_unknown_flag_status_is_end_user(self):
        row = _shape_one(_config(columns=["flag_status"]), {"flag_status": 9})

        assert row["flag_status"] == "End User <sup>( all )</sup>"

    def test_configured_label_markup_is_kept(self):
        config = _config(
            columns=["status"],
            status_labels={"status": {"paid": '<span class="label">Paid</span>'}},
        )

        row = _shape_one(config, {"status": "paid"})

        assert row["status"] == '<span class="label">Paid</span>'

    def test_unlabelled_status_value_is_escaped(self):
        sink = MemoryAuditSink()
        config = _config(columns=["status"], status_labels={"status": {"paid": "Paid"}})
        sanitizer = HtmlSanitizer(audit_sink=sink)

        row = _shape_one(config, {"status": "<script>alert(1)</script>"}, sanitizer=sanitizer)

        assert row["status"] == "&lt;script&gt;alert(1)&lt;/script&gt;"
        assert len(sink.of_type(SecurityEventType.XSS_ATTEMPT)) == 1


class TestActions:
    def test_buttons_and_removal(self):
        spec = ActionSpec(
            enabled=True,
            buttons=("view", "insert", "edit", "delete", "print"),
            removed=("delete",),
            url="/orders/",
        )

        html = render_actions(7, spec)

        for button in ("view", "insert", "edit", "print"):
            assert f'href="/orders/7/{button}"' in html
        assert "delete" not in html
        assert 'class="btn btn-xs btn-print"' in html

    def test_action_column_is_raw(self):
        config = _config(columns=["name"], actions={"buttons": ["print"], "url": "/items"})

        row = _shape_one(config, {"id": 3, "name": "pen"})

        assert row["action"].startswith('<a href="/items/3/view"')

    def test_clickable_row_attributes(self):
        assert row_attributes(7) == {"class": "row-list-url clickable", "rlp": "Nw=="}

        row = _shape_one(_config(columns=["name"], clickable=True), {"id": 7, "name": "pen"})
        assert row["DT_RowAttr"]["rlp"] == "Nw=="


class TestColumnShaper:
    def test_row_numbers_follow_page_start(self):
        config = _config(columns=["number_lists", "name"], index_lists=True)

        rows = ColumnShaper(config).shape([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}], start=20)

        assert rows[0]["DT_RowIndex"] == 21
        assert rows[1]["number_lists"] == 22

    def test_html_is_escaped_and_reported(self):
        sink = MemoryAuditSink()
        config = _config(columns=["name"])
        sanitizer = HtmlSanitizer(audit_sink=sink)

        row = _shape_one(config, {"name": "<script>alert(1)</script>"}, sanitizer=sanitizer)

        assert row["name"] == "&lt;script&gt;alert(1)&lt;/script&gt;"
        assert len(sink.of_type(SecurityEventType.XSS_ATTEMPT)) == 1

    def test_raw_columns_are_not_escaped(self):
        config = _config(columns=["badge"], raw_columns=["badge"])

        row = _shape_one(config, {"badge": "<b>new</b>"})

        assert row["badge"] == "<b>new</b>"

    def test_loopback_ip_is_replaced_by_client_ip(self):
        config = _config(columns=["ip_address"])

        row = _shape_one(config, {"ip_address": "::1"}, client=ClientInfo(ip="10.0.0.5"))

        assert row["ip_address"] == "10.0.0.5"

    def test_relation_map_applies_without_joins(self):
        config = _config(columns=["owner"], relations={"owner": {1: "Alice"}})

        assert _shape_one(config, {"id": 1, "owner": "x"})["owner"] == "Alice"
        assert _shape_one(config, {"id": 2, "owner": "x"})["owner"] == "x"

    def test_relation_map_ignored_with_joins(self):
        config = _config(
            columns=["owner"],
            relations={"owner": {1: "Alice"}},
            foreign_keys={"items.owner_id": "users.id"},
        )

        assert _shape_one(config, {"id": 1, "owner": "x"})["owner"] == "x"

    def test_password_is_never_returned(self):
        config = _config(columns=["name", "password"])

        row = _shape_one(config, {"id": 1, "name": "a", "password": "secret"})

        assert "password" not in row

    def test_identity_is_kept_even_when_not_displayed(self):
        row = _shape_one(_config(columns=["name"]), {"id": 5, "name": "a", "extra": "x"})

        assert row == {"id": 5, "name": "a"}

    def test_unconfigured_columns_come_from_first_row(self):
        config = TableConfigBuilder("loose").build()

        row = _shape_one(config, {"id": 1, "made": date(2024, 1, 3), "total": Decimal("2.50")})

        assert row == {"id": 1, "made": "2024-01-03", "total": "2.50"}

    def test_number_format_applies(self):
        config = _config(columns=["total"], format_data=[{"field_name": "total", "decimal_endpoint": 2}])

        assert _shape_one(config, {"total": Decimal("1250.5")})["total"] == "1,250.50"


class TestImages:
    def _renderer(self, existing):
        return ImageRenderer(url_prefix="/media", exists=lambda path: path in existing)

    def test_missing_file_marker(self):
        renderer = self._renderer(set())

        assert renderer.render("photo", "uploads/a.png", {}) == MISSING_FILE_MARKER.format(name="a.png")

    def test_thumbnail_preferred(self):
        renderer = self._renderer({"uploads/a.png", "uploads/thumb/tnail_a.png"})

        html = renderer.render("photo", "uploads/a.png", {}, "Photo")

        assert 'src="/media/uploads/thumb/tnail_a.png"' in html
        assert 'alt="imgsrc::Photo"' in html

    def test_explicit_thumb_column(self):
        renderer = self._renderer({"uploads/a.png", "uploads/small/a.png"})

        html = renderer.render("photo", "uploads/a.png", {"photo_thumb": "uploads/small/a.png"})

        assert 'src="/media/uploads/small/a.png"' in html

    def test_non_image_shows_basename(self):
        renderer = self._renderer(set())

        assert renderer.render("photo", "docs/report<1>.pdf", {}) == "report&lt;1&gt;.pdf"

    def test_image_field_through_shaper(self):
        config = _config(columns=["photo"], image_fields=["photo"])
        images = self._renderer({"uploads/a.png"})

        row = _shape_one(config, {"photo": "uploads/a.png"}, images=images)

        assert row["photo"].startswith('<center><img class="cdy-img-thumb" src="/media/uploads/a.png"')
