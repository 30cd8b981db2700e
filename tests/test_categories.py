"""Tests for the category catalog."""

from unittest.mock import MagicMock

import pytest
from google.protobuf.message import DecodeError

from trace_warden.categories import (
    SYNTHETIC_CATEGORIES,
    list_categories,
    message_classes,
    parse_service_state,
)
from trace_warden.process import CapturedOutput, ProcessController


def controller_returning(output: CapturedOutput | Exception) -> MagicMock:
    controller = MagicMock(spec=ProcessController)
    if isinstance(output, Exception):
        controller.run_and_capture.side_effect = output
    else:
        controller.run_and_capture.return_value = output
    return controller


def test_parse_service_state(make_service_state):
    """Categories come from the ftrace descriptor only."""
    payload = make_service_state({"gfx": "Graphics", "am": "Activity Manager"})
    assert parse_service_state(payload) == {"gfx": "Graphics", "am": "Activity Manager"}


def test_parse_empty_payload():
    assert parse_service_state(b"") == {}


def test_parse_truncated_payload_raises():
    with pytest.raises(DecodeError):
        parse_service_state(b"\x12\x05ab")


def test_unknown_fields_are_skipped(make_service_state):
    """Fields outside the described path do not break decoding."""
    payload = make_service_state({"sched": "CPU Scheduling"})
    # Field 1 (producers) with an empty embedded message, then a varint field 7.
    extra = b"\x0a\x00\x38\x05"
    assert parse_service_state(extra + payload) == {"sched": "CPU Scheduling"}


def test_message_classes_are_cached():
    assert message_classes() is message_classes()


def test_list_categories_merges_synthetic(make_service_state):
    payload = make_service_state({"wm": "Window Manager", "am": "Activity Manager"})
    controller = controller_returning(CapturedOutput(stdout=payload, returncode=0))

    result = list_categories(controller, "perfetto --query-raw", 5)

    assert result["wm"] == "Window Manager"
    for name, description in SYNTHETIC_CATEGORIES.items():
        assert result[name] == description
    assert list(result) == sorted(result)
    controller.run_and_capture.assert_called_once_with("perfetto --query-raw", 5)


def test_list_categories_spawn_failure():
    """A missing daemon binary yields only the synthetic categories."""
    controller = controller_returning(FileNotFoundError("perfetto"))
    assert list_categories(controller, "q", 5) == dict(sorted(SYNTHETIC_CATEGORIES.items()))


def test_list_categories_decode_failure():
    controller = controller_returning(CapturedOutput(stdout=b"\x12\x05ab", returncode=0))
    assert list_categories(controller, "q", 5) == dict(sorted(SYNTHETIC_CATEGORIES.items()))


def test_list_categories_parses_output_of_failed_query(make_service_state):
    """A non-zero exit is logged, but whatever was printed is still used."""
    payload = make_service_state({"gfx": "Graphics"})
    controller = controller_returning(CapturedOutput(stdout=payload, returncode=1))
    assert "gfx" in list_categories(controller, "q", 5)


def test_list_categories_timeout():
    controller = controller_returning(CapturedOutput(stdout=b"", returncode=None, timed_out=True))
    assert list_categories(controller, "q", 5) == dict(sorted(SYNTHETIC_CATEGORIES.items()))
