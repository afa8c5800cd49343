"""
Unit tests for change detection.
"""

from formengine.change_tracker import ChangeTracker, content_hash, diff_path_to_dotted
from formengine.form_state import FormState


class TestContentHash:
    """Test cases for content hashing."""

    def test_key_order_does_not_matter(self):
        assert content_hash({'a': 1, 'b': 2}) == content_hash({'b': 2, 'a': 1})

    def test_numeric_representation_does_not_matter(self):
        assert content_hash({'qty': 1}) == content_hash({'qty': 1.0})

    def test_list_order_matters(self):
        assert content_hash({'items': [1, 2]}) != content_hash({'items': [2, 1]})

    def test_none_hashes_as_empty(self):
        assert content_hash(None) == content_hash({})


class TestChangeTracker:
    """Test cases for ChangeTracker."""

    def setup_method(self):
        self.state = FormState({}, 'f')
        self.tracker = ChangeTracker(self.state)

    def test_unchanged_after_reseed(self):
        self.tracker.reseed({'title': 'a'})
        assert not self.tracker.is_updated({'title': 'a'})
        assert self.tracker.is_updated({'title': 'b'})

    def test_mark_submitted_moves_baseline(self):
        self.tracker.reseed({'title': 'a'})

        assert self.tracker.mark_submitted({'title': 'b'}) is True
        assert self.tracker.mark_submitted({'title': 'b'}) is False
        assert self.tracker.mark_submitted({'title': 'a'}) is True

    def test_without_baseline_everything_is_updated(self):
        assert self.tracker.mark_submitted({}) is True

    def test_sync_source_detects_new_content(self):
        assert self.tracker.sync_source({'a': 1}) is True
        assert self.tracker.sync_source({'a': 1}) is False
        assert self.tracker.sync_source({'a': 2}) is True

    def test_changed_paths(self):
        self.tracker.reseed({'title': 'a', 'items': [{'name': 'x'}], 'same': 1})
        changed = self.tracker.changed_paths({'title': 'b', 'items': [{'name': 'y'}], 'same': 1.0})
        assert changed == ['items.0.name', 'title']

    def test_single_scalar_edit_is_reported(self):
        self.tracker.reseed({'title': 'a'})
        assert self.tracker.changed_paths({'title': 'b'}) == ['title']

    def test_added_row_is_reported(self):
        self.tracker.reseed({'items': [{'name': 'x'}]})
        assert self.tracker.changed_paths({'items': [{'name': 'x'}, {'name': 'y'}]}) == ['items.1']

    def test_diff_path_to_dotted(self):
        assert diff_path_to_dotted("root['items'][0]['name']") == 'items.0.name'
        assert diff_path_to_dotted("root") == ''
