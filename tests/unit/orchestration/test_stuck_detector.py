"""Tests for structural stuck detection."""
import pytest

from conductor.config.schema import StuckConfig
from conductor.orchestration.stuck_detector import (
    StuckDetector,
    StuckPattern,
    build_input_signature,
    hash_content,
)


@pytest.fixture
def detector():
    return StuckDetector()


def read(detector, path="a.liquid", result="same", is_error=False):
    detector.record_tool_call("read_file", {"path": path}, result, is_error, False)


def test_hash_content_is_truncated_md5():
    assert len(hash_content("anything")) == 12
    assert hash_content("x") == hash_content("x")


def test_signature_uses_identifying_keys_only():
    """Incidental payload does not change the signature"""
    first = build_input_signature("edit", {"filePath": "a.css", "new_text": "one"})
    second = build_input_signature("edit", {"filePath": "a.css", "new_text": "two"})

    assert first == second == "edit|filePath=a.css"


def test_signature_truncates_long_values():
    signature = build_input_signature("grep", {"pattern": "x" * 500})

    assert signature == "grep|pattern=" + "x" * 100


def test_same_action_observation(detector):
    """Four identical calls with identical results"""
    for _ in range(3):
        read(detector)
    assert detector.detect().is_stuck is False

    read(detector)
    detection = detector.detect()

    assert detection.is_stuck is True
    assert detection.pattern is StuckPattern.SAME_ACTION_OBSERVATION
    assert detection.loop_start_index == 0


def test_same_action_error(detector):
    """Three identical calls that all error, even with different messages"""
    for attempt in range(3):
        read(detector, result=f"error {attempt}", is_error=True)

    detection = detector.detect()

    assert detection.pattern is StuckPattern.SAME_ACTION_ERROR
    assert detection.pattern.is_fatal is True


def test_changing_results_are_not_stuck(detector):
    """Re-reading a file whose content keeps changing is progress"""
    for version in range(6):
        read(detector, result=f"version {version}")

    assert detector.detect().is_stuck is False


def test_successful_edit_breaks_window(detector):
    """An intervening edit resets the same-action window"""
    for _ in range(3):
        read(detector)
    detector.record_tool_call("edit_file", {"filePath": "a.liquid"}, "ok", False, True)
    read(detector)

    assert detector.detect().is_stuck is False


def test_monologue(detector):
    """Three identical assistant messages with no tools between"""
    for _ in range(3):
        detector.record_assistant_message("Let me think about this.")

    detection = detector.detect()

    assert detection.pattern is StuckPattern.MONOLOGUE
    assert detection.pattern.severity == "escalate"


def test_monologue_broken_by_tool_call(detector):
    detector.record_assistant_message("Let me think about this.")
    detector.record_assistant_message("Let me think about this.")
    read(detector)
    detector.record_assistant_message("Let me think about this.")

    assert detector.detect().is_stuck is False


def test_empty_messages_are_not_a_monologue(detector):
    for _ in range(3):
        detector.record_assistant_message("")

    assert detector.detect().is_stuck is False


def test_alternating(detector):
    """A-B-A-B-A-B over a full window"""
    for _ in range(6):
        read(detector, path="a.liquid", result="A")
        read(detector, path="b.liquid", result="B")

    detection = detector.detect()

    assert detection.pattern is StuckPattern.ALTERNATING
    assert detection.loop_start_index == 6


def test_alternating_needs_full_window(detector):
    """Six alternating calls are too short a history"""
    for _ in range(3):
        read(detector, path="a.liquid", result="A")
        read(detector, path="b.liquid", result="B")

    assert detector.detect().is_stuck is False


def test_three_way_rotation_is_not_alternating(detector):
    for _ in range(4):
        read(detector, path="a.liquid", result="A")
        read(detector, path="b.liquid", result="B")
        read(detector, path="c.liquid", result="C")

    assert detector.detect().is_stuck is False


def test_compaction_loop(detector):
    """Ten compactions without a single edit"""
    for _ in range(9):
        detector.record_compaction(False)
    assert detector.detect().is_stuck is False

    detector.record_compaction(False)
    detection = detector.detect()

    assert detection.pattern is StuckPattern.COMPACTION_LOOP
    assert detection.pattern.severity == "fatal"


def test_edit_resets_compaction_count(detector):
    for _ in range(9):
        detector.record_compaction(False)
    detector.record_tool_call("edit_file", {"filePath": "a.css"}, "ok", False, True)
    detector.record_compaction(False)

    assert detector.detect().is_stuck is False


def test_custom_thresholds():
    detector = StuckDetector(StuckConfig(same_action_error=2))
    detector.record_tool_call("grep", {"pattern": "x"}, "boom", True, False)
    detector.record_tool_call("grep", {"pattern": "x"}, "boom", True, False)

    assert detector.detect().pattern is StuckPattern.SAME_ACTION_ERROR


def test_history_is_bounded():
    detector = StuckDetector(StuckConfig(history_limit=20))
    for version in range(50):
        read(detector, result=str(version))

    assert len(detector.history) == 20
    assert detector.total_calls == 50


def test_message_run_is_bounded(detector):
    for n in range(100):
        detector.record_assistant_message(f"thought {n}")

    assert len(detector._message_run) == detector.config.monologue
    assert detector.detect().is_stuck is False

    for _ in range(3):
        detector.record_assistant_message("same again")
    assert detector.detect().pattern is StuckPattern.MONOLOGUE


def test_history_limit_never_below_alternating_window():
    assert StuckConfig(history_limit=3).history_limit == 12


def test_detection_to_dict(detector):
    for _ in range(4):
        read(detector)

    payload = detector.detect().to_dict()

    assert payload["pattern"] == "same_action_observation"
    assert payload["severity"] == "escalate"
    assert payload["is_stuck"] is True
