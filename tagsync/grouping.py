"""
Name-prefix grouping of tags

Tags are commonly named "Group: Value" (or "Group/Value"). Grouping is a
display concern only and never affects selection state.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from .models import Item

DEFAULT_SEPARATORS = (":", "/")


def group_label(name: str, separators: Sequence[str] = DEFAULT_SEPARATORS) -> Optional[str]:
    """
    Derive the group label of a tag name

    The name is split at the first occurrence of any separator in the set.

    Args:
        name: Tag name, e.g. "Locale: en-US"
        separators: Separator strings to look for

    Returns:
        The stripped prefix, or None if no separator occurs or the prefix is empty
    """
    cut = None
    for separator in separators:
        if not separator:
            continue
        index = name.find(separator)
        if index != -1 and (cut is None or index < cut):
            cut = index

    if cut is None:
        return None

    label = name[:cut].strip()
    return label or None


def group_items(items: Iterable[Item],
                separators: Sequence[str] = DEFAULT_SEPARATORS) -> Dict[Optional[str], List[Item]]:
    """Group items by label, keeping the order in which labels first appear"""
    groups: Dict[Optional[str], List[Item]] = {}
    for item in items:
        groups.setdefault(group_label(item.name, separators), []).append(item)
    return groups
