"""Unit tests for the category catalog fetcher."""

import logging
import pytest

from traceur.engine.categories import (
    SYNTHETIC_CATEGORIES,
    CategoryCatalogFetcher,
    _text,
    parse_atrace_categories,
    tracing_service_state_class,
)


def make_state(sources):
    """Serialize a TracingServiceState with {data source name: {category: description}}."""
    state = tracing_service_state_class()()
    for name, categories in sources.items():
        descriptor = state.data_sources.add().ds_descriptor
        descriptor.name = name
        for category_name, description in categories.items():
            category = descriptor.ftrace_descriptor.atrace_categories.add()
            category.name = category_name
            category.description = description
    return state.SerializeToString()


def length_delimited(field_number, payload):
    """Encode one length-delimited field (payloads here stay under 128 bytes)."""
    return bytes([(field_number << 3) | 2, len(payload)]) + payload


def raw_state_with_category_names(*names):
    """Wire-encode a TracingServiceState by hand so names may be invalid UTF-8."""
    categories = b"".join(
        length_delimited(1, length_delimited(1, name) + length_delimited(2, b"desc"))
        for name in names
    )
    descriptor = length_delimited(1, b"linux.ftrace") + length_delimited(8, categories)
    return length_delimited(2, length_delimited(1, descriptor))


@pytest.mark.unit
class TestParseAtraceCategories:

    def test_reads_ftrace_categories_sorted(self):
        payload = make_state({
            "android.power": {},
            "linux.ftrace": {"wm": "Window Manager", "am": "Activity Manager", "gfx": "Graphics"},
        })

        categories = parse_atrace_categories(payload)

        assert list(categories) == ["am", "gfx", "wm"]
        assert categories["wm"] == "Window Manager"

    def test_only_first_ftrace_source_is_used(self):
        payload = make_state({"linux.ftrace": {"sched": "CPU Scheduling"}})
        payload += make_state({"linux.ftrace": {"view": "View System"}})

        # Concatenated messages merge their repeated fields in order.
        assert parse_atrace_categories(payload) == {"sched": "CPU Scheduling"}

    def test_no_ftrace_source(self):
        assert parse_atrace_categories(make_state({"android.log": {}})) == {}

    def test_empty_response(self):
        assert parse_atrace_categories(b"") == {}

    def test_undecodable_strings_are_replaced(self):
        assert _text(b"\xff\xfebad") == "\ufffd\ufffdbad"
        assert _text("sched") == "sched"


@pytest.mark.unit
class TestCategoryCatalogFetcher:

    def test_merges_synthetic_categories(self, fake_perfetto):
        fake_perfetto.query_stdout = make_state({"linux.ftrace": {"sched": "CPU Scheduling"}})

        categories = CategoryCatalogFetcher(fake_perfetto).fetch()

        assert fake_perfetto.commands == ["perfetto --query-raw"]
        assert categories == {
            "cpu": "callstack samples",
            "logs": "android logcat",
            "sched": "CPU Scheduling",
            "sys_stats": "meminfo and vmstats",
        }
        assert list(categories) == sorted(categories)

    def test_synthetic_entries_override_daemon(self, fake_perfetto):
        fake_perfetto.query_stdout = make_state({"linux.ftrace": {"logs": "something else"}})

        assert CategoryCatalogFetcher(fake_perfetto).fetch()["logs"] == "android logcat"

    def test_timeout_yields_only_synthetic_entries(self, fake_perfetto, caplog):
        fake_perfetto.query_hangs = True

        with caplog.at_level(logging.ERROR):
            categories = CategoryCatalogFetcher(fake_perfetto, timeout_s=0.1).fetch()

        assert categories == SYNTHETIC_CATEGORIES
        assert fake_perfetto.handles[-1].killed is True
        assert any("timed out" in r.getMessage() for r in caplog.records)

    def test_undecodable_response_is_logged(self, fake_perfetto, caplog):
        fake_perfetto.query_stdout = b"\xff\xff\xff\xff"

        with caplog.at_level(logging.ERROR):
            categories = CategoryCatalogFetcher(fake_perfetto).fetch_daemon_categories()

        assert categories == {}
        assert any("Could not decode" in r.getMessage() for r in caplog.records)

    def test_nonzero_exit_still_parses_output(self, fake_perfetto, caplog):
        fake_perfetto.query_exit = 1
        fake_perfetto.query_stdout = make_state({"linux.ftrace": {"am": "Activity Manager"}})

        with caplog.at_level(logging.ERROR):
            categories = CategoryCatalogFetcher(fake_perfetto).fetch_daemon_categories()

        assert categories == {"am": "Activity Manager"}
        assert any("failed with: 1" in r.getMessage() for r in caplog.records)

    def test_engine_lists_catalog(self, engine, fake_perfetto):
        fake_perfetto.query_stdout = make_state({"linux.ftrace": {"am": "Activity Manager"}})

        assert "am" in engine.list_categories()
        assert "cpu" in engine.list_categories()

    def test_invalid_utf8_category_names_keep_catalog_usable(self, fake_perfetto):
        fake_perfetto.query_stdout = raw_state_with_category_names(b"sched", b"\xff\xfebad")

        categories = CategoryCatalogFetcher(fake_perfetto).fetch()

        assert all(isinstance(name, str) for name in categories)
        assert all(isinstance(description, str) for description in categories.values())
        for name, description in SYNTHETIC_CATEGORIES.items():
            assert categories[name] == description
        assert list(categories) == sorted(categories)
