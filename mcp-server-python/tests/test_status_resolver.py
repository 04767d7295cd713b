"""
Tests for legacy status alias resolution.
"""

from hypothesis import given, strategies as st

from models.status import LEGACY_STATUS_MAP, JobStatus
from utils.status_resolver import is_legacy_status, resolve_status


class TestResolveStatus:
    """Test suite for resolve_status."""

    def test_each_alias_maps_to_its_canonical_status(self):
        """Test the four historical strings resolve to canonical statuses."""
        assert resolve_status("pending") == "new"
        assert resolve_status("pre-field") == "pre_fielding"
        assert resolve_status("in-progress") == "in_progress"
        assert resolve_status("completed") == "ready_to_submit"

    def test_alias_table_has_exactly_four_entries(self):
        """Test no other alias sneaks into the table."""
        assert len(LEGACY_STATUS_MAP) == 4
        canonical = {s.value for s in JobStatus}
        assert set(LEGACY_STATUS_MAP.values()) <= canonical

    def test_canonical_status_passes_through(self):
        """Test canonical statuses are returned unchanged."""
        for status in JobStatus:
            assert resolve_status(status.value) == status.value

    def test_unknown_string_passes_through(self):
        """Test unknown strings are not rejected here."""
        assert resolve_status("archived") == "archived"

    def test_non_string_input_passes_through(self):
        """Test None and non-string values come back unchanged."""
        assert resolve_status(None) is None
        assert resolve_status(42) == 42
        assert resolve_status("") == ""

    def test_custom_alias_table(self):
        """Test a caller-supplied alias table is honoured."""
        assert resolve_status("wip", {"wip": "in_progress"}) == "in_progress"
        assert resolve_status("pending", {"wip": "in_progress"}) == "pending"

    @given(st.one_of(st.text(), st.sampled_from(sorted(LEGACY_STATUS_MAP)), st.none()))
    def test_resolution_is_idempotent(self, status):
        """Resolving twice gives the same result as resolving once."""
        once = resolve_status(status)
        assert resolve_status(once) == once


class TestIsLegacyStatus:
    """Test suite for is_legacy_status."""

    def test_aliases_are_legacy(self):
        for alias in LEGACY_STATUS_MAP:
            assert is_legacy_status(alias) is True

    def test_canonical_and_other_values_are_not_legacy(self):
        assert is_legacy_status("in_progress") is False
        assert is_legacy_status(None) is False
        assert is_legacy_status(3) is False
