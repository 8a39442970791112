import pytest

from rabbit_hole.decision import effective_pattern
from rabbit_hole.exceptions import ConfigError
from rabbit_hole.models import MergedConfig, QueueEntry
from rabbit_hole.queue_config import (
    load_document,
    merge_document,
    merge_documents,
    merge_queue_configs,
)


def test_empty_default_regex_never_overwrites():
    merged = merge_documents([{"default_regex": "a"}, {"default_regex": ""}])
    assert merged.default_regex == "a"


def test_last_non_empty_default_regex_wins():
    merged = merge_documents([{"default_regex": "a"}, {}, {"default_regex": "b"}, {"default_regex": None}])
    assert merged.default_regex == "b"


def test_queue_lists_appended_in_order_with_duplicates():
    merged = merge_documents([
        {"queue_list": [{"queue_name": "A"}, {"queue_name": "B"}]},
        {"queue_list": [{"queue_name": "C"}, {"queue_name": "A", "regex_to_drop": "x"}]},
    ])
    assert [e.queue_name for e in merged.queue_list] == ["A", "B", "C", "A"]
    assert merged.queue_list[3].regex_to_drop == "x"
    assert merged.queue_names() == ["A", "B", "C"]


def test_absent_queue_list_is_empty():
    merged = merge_documents([{"default_regex": "a"}])
    assert merged.queue_list == ()


def test_merge_document_returns_new_config():
    start = MergedConfig(default_regex="a", queue_list=(QueueEntry(queue_name="A"),))
    out = merge_document(start, {"queue_list": [{"queue_name": "B"}]})
    assert out is not start
    assert [e.queue_name for e in start.queue_list] == ["A"]
    assert [e.queue_name for e in out.queue_list] == ["A", "B"]


def test_effective_pattern_falls_back_to_merged_default():
    merged = merge_documents([
        {"default_regex": "d", "queue_list": [{"queue_name": "A"}, {"queue_name": "B", "regex_to_drop": ""}, {"queue_name": "C", "regex_to_drop": "c"}]},
    ])
    patterns = [effective_pattern(e, merged.default_regex) for e in merged.queue_list]
    assert patterns == ["d", "d", "c"]


def test_invalid_entry_is_config_error():
    with pytest.raises(ConfigError):
        merge_documents([{"queue_list": [{"regex_to_drop": "x"}]}])
    with pytest.raises(ConfigError):
        merge_documents([{"queue_list": [{"queue_name": ""}]}])
    with pytest.raises(ConfigError):
        merge_documents([{"queue_list": {"queue_name": "A"}}])


def test_invalid_regex_is_config_error():
    with pytest.raises(ConfigError):
        merge_documents([{"queue_list": [{"queue_name": "A", "regex_to_drop": "("}]}])


def test_json5_files_layered_in_argument_order(tmp_path):
    base = tmp_path / "base.json5"
    base.write_text(
        """
        // base config
        {
          default_regex: 'heartbeat',
          queue_list: [
            {queue_name: 'orders'},
            {queue_name: 'audit', regex_to_drop: '\\\\|drop$',},
          ],
        }
        """
    )
    extra = tmp_path / "extra.json5"
    extra.write_text('{"default_regex": "", "queue_list": [{"queue_name": "orders"}]}')

    merged = merge_queue_configs([base, extra])

    assert merged.default_regex == "heartbeat"
    assert [e.queue_name for e in merged.queue_list] == ["orders", "audit", "orders"]
    assert merged.queue_list[1].regex_to_drop == r"\|drop$"


def test_unreadable_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_document(tmp_path / "missing.json5")


def test_malformed_file_is_config_error(tmp_path):
    bad = tmp_path / "bad.json5"
    bad.write_text("{queue_list: [")
    with pytest.raises(ConfigError):
        merge_queue_configs([bad])


def test_non_object_document_is_config_error(tmp_path):
    bad = tmp_path / "list.json5"
    bad.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        load_document(bad)


def test_non_utf8_file_is_config_error(tmp_path):
    bad = tmp_path / "latin1.json5"
    bad.write_bytes(b'{default_regex: "caf\xe9"}')
    with pytest.raises(ConfigError):
        merge_queue_configs([bad])


@pytest.mark.parametrize("queue_list", [{}, "", 0, False, "orders"])
def test_falsy_or_scalar_queue_list_is_config_error(queue_list):
    with pytest.raises(ConfigError):
        merge_documents([{"queue_list": queue_list}])


def test_null_queue_list_is_empty():
    assert merge_documents([{"queue_list": None}]).queue_list == ()
