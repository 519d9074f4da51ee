import networkx as nx

from loguru import logger

from phylogeny import Phylogeny, MalformedTreeError, support_value, set_branch_length

"""
Collapsing of poorly supported internal nodes.

A node whose numeric support label is below the threshold is removed
and its children take its place, in order, in the parent's child list.
When the tree carries branch lengths, the removed node's length is
added to each child's length, so every root-to-leaf path keeps its
total length. The root is never removed.

Nodes are visited in postorder, so a node's subtree has already been
resolved when it is examined.
"""

def has_branch_lengths(phylo : Phylogeny) -> bool:
    """
    Returns True if every non-root node has a branch length and False
    if none has one. The root length is ignored since it belongs to no
    edge of the tree. Any other mix raises MalformedTreeError.
    """
    lengths = [
        phylo.tree.nodes[n].get("branch_length") is not None
        for n in phylo.tree.nodes() if n != phylo.root
    ]
    if all(lengths):
        return bool(lengths)
    if not any(lengths):
        return False

    missing = lengths.count(False)
    raise MalformedTreeError(
        f"Cannot collapse a tree where only some branches have lengths ({missing} of {len(lengths)} missing)."
    )

def collapse_node(phylo : Phylogeny, node : int, use_lengths : bool):
    tree = phylo.tree
    parent = phylo.parent(node)
    children = phylo.children(node)

    if use_lengths:
        parent_length = tree.nodes[node].get("branch_length") or 0.0
        for child in children:
            length = tree.nodes[child].get("branch_length") or 0.0
            set_branch_length(tree, child, length + parent_length)

    siblings = phylo.children(parent)
    idx = siblings.index(node)
    tree.remove_node(node)
    phylo.replace_children(parent, siblings[:idx] + children + siblings[idx + 1:])

def collapse_pass(phylo : Phylogeny, threshold : float, use_lengths : bool) -> int:
    num_collapsed = 0
    for node in list(nx.dfs_postorder_nodes(phylo.tree, phylo.root)):
        if node == phylo.root or phylo.is_leaf(node):
            continue
        value = support_value(phylo.tree, node)
        if value is None or value >= threshold:
            continue
        collapse_node(phylo, node, use_lengths)
        num_collapsed += 1
    return num_collapsed

def collapse(phylo : Phylogeny, threshold : float) -> Phylogeny:
    """Removes every non-root internal node with support below `threshold`."""
    use_lengths = has_branch_lengths(phylo)

    total = 0
    while True:
        num_collapsed = collapse_pass(phylo, threshold, use_lengths)
        if num_collapsed == 0:
            break
        total += num_collapsed

    logger.debug(f"Collapsed {total} nodes with support < {threshold}.")
    return phylo
