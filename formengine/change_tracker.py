"""
Change detection for submitted documents.

A baseline content hash is recorded when the form loads (or is reset); submit
reports whether the current document differs from the last submitted (or loaded)
one. Hashing uses DeepHash so equal content hashes equal regardless of dict key
order or int/float representation; DeepDiff lists which paths changed.
"""

import re
import logging
from copy import deepcopy
from typing import Any, Dict, List, Optional

from deepdiff import DeepDiff, DeepHash

from .form_state import FormState

logger = logging.getLogger(__name__)

_DIFF_SEGMENT = re.compile(r"\['((?:[^'\\]|\\.)*)'\]|\[(\d+)\]")


def content_hash(document: Any) -> str:
    """Stable hash of a document's content (list order matters, key order does not)."""
    document = document if document is not None else {}
    hashes = DeepHash(document, ignore_numeric_type_changes=True, ignore_iterable_order=False)
    return hashes[document]


def diff_path_to_dotted(path: str) -> str:
    """Convert a DeepDiff path such as root['items'][0]['name'] to items.0.name."""
    parts = []
    for key, index in _DIFF_SEGMENT.findall(path):
        parts.append(key if key else index)
    return ".".join(parts)


class ChangeTracker:
    """Baseline bookkeeping persisted in the form state."""

    def __init__(self, state: FormState):
        self.state = state

    @property
    def baseline_hash(self) -> Optional[str]:
        return self.state.get('baseline_hash')

    def reseed(self, document: Dict[str, Any]) -> None:
        """Record `document` as the unchanged reference."""
        self.state.set('baseline_hash', content_hash(document))
        self.state.set('baseline_document', deepcopy(document))
        logger.debug("Change baseline reseeded")

    def is_updated(self, document: Dict[str, Any]) -> bool:
        baseline = self.baseline_hash
        return baseline is None or baseline != content_hash(document)

    def mark_submitted(self, document: Dict[str, Any]) -> bool:
        """
        Compare against the baseline, then make `document` the new baseline.

        Returns:
            True when the document changed since the previous submit or load
        """
        current = content_hash(document)
        baseline = self.baseline_hash
        updated = baseline is None or baseline != current
        self.state.set('baseline_hash', current)
        self.state.set('baseline_document', deepcopy(document))
        return updated

    def sync_source(self, source: Optional[Dict[str, Any]]) -> bool:
        """
        Remember the data source's content hash.

        Returns:
            True when the source content differs from the one seen last
        """
        source_hash = content_hash(source or {})
        if self.state.get('source_hash') == source_hash:
            return False
        self.state.set('source_hash', source_hash)
        return True

    def changed_paths(self, document: Dict[str, Any]) -> List[str]:
        """Dotted paths that differ from the baseline document."""
        baseline = self.state.get('baseline_document')
        if baseline is None:
            return []
        diff = DeepDiff(baseline, document, ignore_numeric_type_changes=True, verbose_level=2, view='tree')
        paths = sorted({diff_path_to_dotted(level.path()) for levels in diff.values() for level in levels})
        return [p for p in paths if p]
