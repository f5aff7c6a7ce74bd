"""
tagsync - Required tag field with coalesced, version-safe entry sync

Keeps an optimistic local view of the tags selected on a CMS entry and
mirrors it into the remote entry with debounced, conflict-retrying writes.
"""

__version__ = "1.0.0"
__author__ = "tagsync Team"
__description__ = "Required tag field with coalesced, version-safe entry sync"
