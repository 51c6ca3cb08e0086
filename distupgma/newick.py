"""
Newick serialization of the clustering dendrogram.
"""

import re
from typing import List

from .state import ClusterNode

_NEWICK_TOKENS = re.compile(r"'(?:[^']|'')*'|[(),:;]|[^(),:;'\s]+")

# Characters that cannot appear in an unquoted label
_RESERVED = re.compile(r"[\s(),:;'\[\]]")


def format_branch_length(value: float, precision: int = 6) -> str:
    """Format a branch length with fixed decimal precision."""
    return f"{value:.{precision}f}"


def format_label(name: str) -> str:
    """
    Render a taxon name as a Newick label.

    Names containing whitespace, quotes or Newick punctuation are wrapped in
    single quotes, with embedded quotes doubled.
    """
    if _RESERVED.search(name):
        return "'" + name.replace("'", "''") + "'"
    return name


def to_newick(nodes: List[ClusterNode], root: int, precision: int = 6) -> str:
    """
    Render the subtree rooted at a node in Newick format.

    Leaves render as their name and internal nodes as
    ``(left:length,right:length)``; the result ends with ``;``. The tree is
    walked with an explicit stack, so deep trees do not hit the recursion limit.

    Args:
        nodes: Node arena; children are referenced by index
        root: Index of the root node
        precision: Decimal places for branch lengths

    Returns:
        Newick string terminated by a semicolon
    """
    parts = []
    stack = [root]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            parts.append(item)
            continue

        node = nodes[item]
        if node.is_leaf:
            parts.append(format_label(node.name))
            continue

        # Pushed in reverse so they pop in output order
        stack.extend([
            ")",
            ":" + format_branch_length(node.branch_length_right, precision),
            node.right,
            ",",
            ":" + format_branch_length(node.branch_length_left, precision),
            node.left,
            "(",
        ])

    return "".join(parts) + ";"


def leaf_names(newick: str) -> List[str]:
    """
    Extract leaf labels from a Newick string, in order of appearance.

    Labels that follow a closing parenthesis belong to internal nodes and
    are skipped, as are branch lengths. Quoted labels are unquoted.

    Args:
        newick: Newick tree string

    Returns:
        List of leaf labels
    """
    names = []
    previous = None
    for token in _NEWICK_TOKENS.findall(newick):
        if token in ('(', ')', ',', ':', ';'):
            previous = token
            continue
        if previous not in (':', ')'):
            if token.startswith("'"):
                token = token[1:-1].replace("''", "'")
            names.append(token)
        previous = token
    return names
