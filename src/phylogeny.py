import itertools
import math

import networkx as nx

from dataclasses import dataclass, field
from typing import Optional

"""
Tree model shared by every stage of AfterPhylo.

A tree is stored as a NetworkX DiGraph whose nodes are integer
indices assigned in preorder (the root is 0) and whose edges point
from parent to child. The successor order of a node is the order of
its children in the Newick string and is never sorted.

Node attributes:
    - `label`: taxon name for leaves; support value or other text
      for internal nodes.
    - `branch_length`: length of the edge into the node, or None.
    - `length_text`: the length exactly as it was read, so that
      untouched numbers are written back verbatim.
    - `annotation`: bracketed comment following the label.
    - `length_annotation`: bracketed comment following the length.
"""

NEWICK = "newick"
NEXUS = "nexus"

LABEL_DELIMITERS = "(),:;["
LENGTH_DELIMITERS = "(),;["

class AfterPhyloError(Exception):
    pass

class FormatError(AfterPhyloError, ValueError):
    pass

class UnrecognizedFormatError(FormatError):
    pass

class MalformedTreeError(FormatError):
    pass

class MissingFileError(AfterPhyloError, FileNotFoundError):
    pass

class InvalidAnnotationRow(AfterPhyloError):
    pass

class StageError(AfterPhyloError):
    """Failure of one pipeline stage while processing one file."""

    def __init__(self, fname, stage, cause):
        self.fname = fname
        self.stage = stage
        self.cause = cause
        super().__init__(f"{fname}: {stage} failed: {cause}")

@dataclass
class Phylogeny:
    tree : nx.DiGraph
    root : int
    format : str = NEWICK
    taxon_map : dict = field(default_factory=dict)

    def copy(self):
        return Phylogeny(
            tree=self.tree.copy(),
            root=self.root,
            format=self.format,
            taxon_map=dict(self.taxon_map)
        )

    def children(self, node):
        return list(self.tree.successors(node))

    def parent(self, node):
        return next(iter(self.tree.predecessors(node)), None)

    def is_leaf(self, node):
        return self.tree.out_degree(node) == 0

    def nodes(self):
        return list(nx.dfs_preorder_nodes(self.tree, self.root))

    def leaves(self):
        return [n for n in self.nodes() if self.is_leaf(n)]

    def internal_nodes(self):
        return [n for n in self.nodes() if not self.is_leaf(n)]

    def replace_children(self, node, children):
        """Rewires `node` so that its successors are exactly `children`, in order."""
        self.tree.remove_edges_from(list(self.tree.out_edges(node)))
        self.tree.add_edges_from((node, c) for c in children)

def parse_number(text : Optional[str]) -> Optional[float]:
    """Returns `text` as a finite float, or None if it is not one."""
    if text is None:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None

def support_value(tree : nx.DiGraph, node : int) -> Optional[float]:
    return parse_number(tree.nodes[node].get("label"))

def set_branch_length(tree : nx.DiGraph, node : int, value : Optional[float]):
    tree.nodes[node]["branch_length"] = value
    tree.nodes[node]["length_text"] = None

def format_length(attrs : dict) -> Optional[str]:
    if attrs.get("branch_length") is None:
        return None
    if attrs.get("length_text") is not None:
        return attrs["length_text"]
    return f"{attrs['branch_length']:.15g}"

def parse_newick(newick : str, tree_format : str = NEWICK) -> Phylogeny:
    """
    Parses a Newick string (optionally terminated by ';') into a
    Phylogeny. Bracketed comments are kept as opaque text, so commas,
    colons and parentheses inside them never act as delimiters.

    Raises MalformedTreeError on unbalanced parentheses or brackets,
    unlabeled leaves, non-numeric branch lengths or trailing text.
    """
    text = newick.strip()
    n = len(text)
    if n == 0:
        raise MalformedTreeError("Tree string is empty.")

    tree = nx.DiGraph()
    indices = itertools.count()

    def skip_whitespace(i):
        while i < n and text[i].isspace():
            i += 1
        return i

    def read_annotation(i):
        depth = 0
        for j in range(i, n):
            if text[j] == "[":
                depth += 1
            elif text[j] == "]":
                depth -= 1
                if depth == 0:
                    return text[i + 1:j], j + 1
        raise MalformedTreeError(f"Unterminated '[' at offset {i}.")

    def read_label(i):
        i = skip_whitespace(i)
        if i < n and text[i] in "'\"":
            quote = text[i]
            j = i + 1
            while j < n:
                if text[j] == quote:
                    # doubled quote is an escaped quote
                    if j + 1 < n and text[j + 1] == quote:
                        j += 2
                        continue
                    return text[i:j + 1], j + 1
                j += 1
            raise MalformedTreeError(f"Unterminated quoted label at offset {i}.")

        j = i
        while j < n and text[j] not in LABEL_DELIMITERS:
            j += 1
        label = text[i:j].strip()
        return (label if label else None), j

    def read_length(i):
        j = i + 1
        while j < n and text[j] not in LENGTH_DELIMITERS:
            j += 1
        raw = text[i + 1:j].strip()
        value = parse_number(raw)
        if value is None:
            raise MalformedTreeError(f"Invalid branch length '{raw}' at offset {i}.")
        return raw, value, j

    def read_node_tail(node, i):
        label, i = read_label(i)
        i = skip_whitespace(i)

        annotation = None
        if i < n and text[i] == "[":
            annotation, i = read_annotation(i)
            i = skip_whitespace(i)

        length_text, branch_length = None, None
        if i < n and text[i] == ":":
            length_text, branch_length, i = read_length(i)
            i = skip_whitespace(i)

        length_annotation = None
        if i < n and text[i] == "[":
            length_annotation, i = read_annotation(i)

        if tree.out_degree(node) == 0 and label is None:
            raise MalformedTreeError(f"Leaf without a label at offset {i}.")

        tree.nodes[node].update(
            label=label,
            branch_length=branch_length,
            length_text=length_text,
            annotation=annotation,
            length_annotation=length_annotation
        )
        return i

    def add_node(stack):
        node = next(indices)
        tree.add_node(node)
        if stack:
            tree.add_edge(stack[-1], node)
        return node

    # internal nodes whose ')' has not been read yet
    stack = []
    root = None
    i = 0
    while True:
        i = skip_whitespace(i)
        node = add_node(stack)
        if root is None:
            root = node
        if i < n and text[i] == "(":
            stack.append(node)
            i += 1
            continue

        i = read_node_tail(node, i)
        while stack:
            i = skip_whitespace(i)
            if i >= n:
                raise MalformedTreeError("Unbalanced parentheses: missing ')'.")
            if text[i] == ",":
                i += 1
                break
            if text[i] == ")":
                i = read_node_tail(stack.pop(), i + 1)
            else:
                raise MalformedTreeError(f"Unexpected '{text[i]}' at offset {i}.")
        else:
            break

    i = skip_whitespace(i)
    if i < n and text[i] == ";":
        i = skip_whitespace(i + 1)
    if i < n:
        raise MalformedTreeError(f"Unexpected text after tree at offset {i}: '{text[i:i + 20]}'.")

    return Phylogeny(tree=tree, root=root, format=tree_format)

def write_newick(phylo : Phylogeny) -> str:
    """Serializes a Phylogeny to a Newick string terminated by ';'."""
    tree = phylo.tree

    subtrees = {}
    for node in nx.dfs_postorder_nodes(tree, phylo.root):
        attrs = tree.nodes[node]
        out = ""
        children = phylo.children(node)
        if children:
            out += "(" + ",".join(subtrees.pop(c) for c in children) + ")"
        if attrs.get("label") is not None:
            out += attrs["label"]
        if attrs.get("annotation") is not None:
            out += f"[{attrs['annotation']}]"
        length = format_length(attrs)
        if length is not None:
            out += f":{length}"
        if attrs.get("length_annotation") is not None:
            out += f"[{attrs['length_annotation']}]"
        subtrees[node] = out

    return subtrees[phylo.root] + ";"
