"""
Unit tests for livescribe.core.transcript.
"""

from livescribe.core.transcript import TranscriptAccumulator


class TestTranscriptAccumulator:
    """Tests for TranscriptAccumulator."""

    def test_init_empty(self):
        """Test a new accumulator has nothing to display."""
        acc = TranscriptAccumulator()
        assert acc.finalized == ""
        assert acc.interim == ""
        assert acc.display() == ""

    def test_append_final_concatenates_in_order(self):
        """Test final segments are joined verbatim in delivery order."""
        acc = TranscriptAccumulator()
        acc.append_final("hello ")
        acc.append_final("world ")
        assert acc.finalized == "hello world "
        assert acc.segments == ("hello ", "world ")

    def test_set_interim_replaces(self):
        """Test interim text is replaced, never appended."""
        acc = TranscriptAccumulator()
        acc.set_interim("hel")
        acc.set_interim("hello")
        assert acc.interim == "hello"

    def test_display_is_finalized_plus_interim(self):
        """Test display combines both parts."""
        acc = TranscriptAccumulator()
        acc.append_final("one ")
        acc.set_interim("two")
        assert acc.display() == "one two"

    def test_append_is_not_idempotent(self):
        """Test replaying a final segment stores it twice."""
        acc = TranscriptAccumulator()
        acc.append_final("again ")
        acc.append_final("again ")
        assert acc.finalized == "again again "

    def test_clear_resets_everything(self):
        """Test clear empties both parts."""
        acc = TranscriptAccumulator()
        acc.append_final("text ")
        acc.set_interim("more")
        acc.clear()
        assert acc.finalized == ""
        assert acc.interim == ""
        assert acc.segments == ()
