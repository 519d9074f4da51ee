import re

import numpy as np

from loguru import logger

from phylogeny import NEWICK, NEXUS, Phylogeny, parse_number, set_branch_length

"""
Tree-to-tree transformations. Each function mutates the given
Phylogeny in place and returns it, so stages can be chained.
"""

PROB_PERCENT = re.compile(r'prob\(percent\)="(\d+)"')
POSTERIOR = re.compile(r"posterior=([-+]?[0-9]*\.?[0-9]+([eE][-+]?[0-9]+)?)")
NEXUS_QUOTE = re.compile(r"[.\s]")

def scale(phylo : Phylogeny, factor : float) -> Phylogeny:
    """Multiplies every branch length by `factor`."""
    if not np.isfinite(factor) or factor == 0:
        raise ValueError(f"Scale factor must be a finite non-zero number, got {factor}.")

    for _, attrs in phylo.tree.nodes(data=True):
        if attrs.get("branch_length") is not None:
            attrs["branch_length"] *= factor
            attrs["length_text"] = None
    return phylo

def strip_labels(phylo : Phylogeny) -> Phylogeny:
    """Removes bracketed annotations from all nodes and numeric labels from internal nodes."""
    tree = phylo.tree
    for node, attrs in tree.nodes(data=True):
        attrs["annotation"] = None
        attrs["length_annotation"] = None
        if tree.out_degree(node) > 0 and parse_number(attrs.get("label")) is not None:
            attrs["label"] = None
    return phylo

def strip_lengths(phylo : Phylogeny) -> Phylogeny:
    for node in phylo.tree.nodes():
        set_branch_length(phylo.tree, node, None)
    return phylo

def simplify_lengths(phylo : Phylogeny) -> Phylogeny:
    """Rewrites every branch length with exactly six digits after the decimal point."""
    for _, attrs in phylo.tree.nodes(data=True):
        if attrs.get("branch_length") is not None:
            attrs["length_text"] = f"{attrs['branch_length']:.6f}"
    return phylo

def extract_confidence(attrs : dict):
    for text in (attrs.get("annotation"), attrs.get("length_annotation")):
        if text is None or not text.startswith("&"):
            continue
        match = PROB_PERCENT.search(text)
        if match:
            return match.group(1)
        match = POSTERIOR.search(text)
        if match:
            return f"{float(match.group(1)) * 100:.0f}"
    return None

def confidence_only(phylo : Phylogeny) -> Phylogeny:
    """
    Replaces the annotations of internal nodes by their confidence
    value: `prob(percent)` as is (MrBayes), or `posterior` times 100
    (BEAST). All other annotations are dropped.
    """
    tree = phylo.tree
    for node, attrs in tree.nodes(data=True):
        if tree.out_degree(node) > 0 and attrs.get("label") is None:
            confidence = extract_confidence(attrs)
            if confidence is not None:
                attrs["label"] = confidence
        attrs["annotation"] = None
        attrs["length_annotation"] = None
    return phylo

def convert_format(phylo : Phylogeny, target : str) -> Phylogeny:
    if target not in (NEWICK, NEXUS):
        raise ValueError(f"Unknown tree format '{target}'.")

    if phylo.format == NEXUS and target == NEWICK:
        for _, attrs in phylo.tree.nodes(data=True):
            for key in ("annotation", "length_annotation"):
                if attrs.get(key) is not None and attrs[key].startswith("&"):
                    attrs[key] = None
    phylo.format = target
    return phylo

def annotate_tips(phylo : Phylogeny, names : dict) -> Phylogeny:
    """
    Relabels every leaf whose label is a key of `names`. In Nexus
    output, new labels containing whitespace or a period are quoted.
    """
    renamed = 0
    for leaf in phylo.leaves():
        attrs = phylo.tree.nodes[leaf]
        name = names.get(attrs["label"])
        if name is None:
            continue
        if phylo.format == NEXUS and NEXUS_QUOTE.search(name):
            name = f"'{name}'"
        attrs["label"] = name
        renamed += 1

    logger.debug(f"Annotated {renamed} of {len(names)} table entries.")
    return phylo
