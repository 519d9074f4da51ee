import os
import re

from pathlib import Path
from loguru import logger

from phylogeny import (
    NEWICK, NEXUS, Phylogeny, parse_newick, write_newick,
    MalformedTreeError, UnrecognizedFormatError, MissingFileError, InvalidAnnotationRow
)

"""
Reading and writing of tree files.

Input is either Newick (first non-blank line starts with '(') or
a Nexus file with a TREES block. For Nexus, taxon identifiers from
the translate table are replaced by their names on the parsed tree,
so only leaf labels that match an identifier as a whole are changed.
"""

NEXUS_SIGNATURE = re.compile(r"^#NEXUS", re.IGNORECASE)
NEWICK_SIGNATURE = re.compile(r"^\(")
TREES_BLOCK = re.compile(r"^\s*begin\s+trees\b", re.IGNORECASE)
TRANSLATE = re.compile(r"^\s*translate\b", re.IGNORECASE)
TREE_STATEMENT = re.compile(r"^\s*tree\b", re.IGNORECASE)
END_BLOCK = re.compile(r"^\s*end(block)?\s*;", re.IGNORECASE)
LEADING_COMMENTS = re.compile(r"^\s*(\[[^\]]*\]\s*)+")

def detect_format(text : str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if NEXUS_SIGNATURE.match(line):
            return NEXUS
        if NEWICK_SIGNATURE.match(line):
            return NEWICK
        raise UnrecognizedFormatError(f"First line '{line[:30]}' is neither Newick nor Nexus.")
    raise UnrecognizedFormatError("File is empty.")

def read_newick_string(lines) -> str:
    tree = ""
    for line in lines:
        line = line.rstrip()
        if not line or line.startswith("#"):
            continue
        tree += line
    return tree

def parse_translate_entries(text, taxon_map):
    for entry in text.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(None, 1)
        if len(parts) != 2:
            logger.warning(f"Ignoring translate entry '{entry}' without a taxon name.")
            continue
        taxon_map[parts[0]] = parts[1].strip().strip("'\"")

def read_nexus_string(lines):
    """
    Returns the Newick string of the first tree statement of the
    TREES block, and the translate table (identifier -> name).
    """
    lines = iter(lines)
    for line in lines:
        if TREES_BLOCK.match(line):
            break
    else:
        raise MalformedTreeError("No TREES block found.")

    taxon_map = {}
    for line in lines:
        if TRANSLATE.match(line):
            line = TRANSLATE.sub("", line, count=1)
            while True:
                content, terminated = line.split(";", 1)[0], ";" in line
                parse_translate_entries(content, taxon_map)
                if terminated:
                    break
                line = next(lines, None)
                if line is None:
                    raise MalformedTreeError("Unterminated translate table.")
        elif TREE_STATEMENT.match(line):
            statement = line.strip()
            while not statement.endswith(";"):
                line = next(lines, None)
                if line is None:
                    break
                statement += line.strip()
            if "=" not in statement:
                raise MalformedTreeError(f"Tree statement without '=': '{statement[:40]}'.")
            newick = statement[statement.index("=") + 1:]
            return LEADING_COMMENTS.sub("", newick), taxon_map
        elif END_BLOCK.match(line):
            break

    raise MalformedTreeError("No tree statement found in TREES block.")

def read_tree(text : str) -> Phylogeny:
    """Parses the contents of a Newick or Nexus file into a Phylogeny."""
    tree_format = detect_format(text)
    lines = text.splitlines()

    if tree_format == NEWICK:
        return parse_newick(read_newick_string(lines), NEWICK)

    newick, taxon_map = read_nexus_string(lines)
    phylo = parse_newick(newick, NEXUS)
    for leaf in phylo.leaves():
        label = phylo.tree.nodes[leaf]["label"]
        if label in taxon_map:
            phylo.tree.nodes[leaf]["label"] = taxon_map[label]
    phylo.taxon_map = taxon_map
    return phylo

def read_tree_file(fname) -> Phylogeny:
    if not os.path.exists(fname):
        raise MissingFileError(f"File {fname} does not exist.")
    with open(fname, "r") as f:
        return read_tree(f.read())

def write_tree(phylo : Phylogeny) -> str:
    newick = write_newick(phylo)
    if phylo.format == NEXUS:
        return f"#NEXUS\nBEGIN TREES;\n\tTREE 1 = {newick}\nEND;\n"
    return newick + "\n"

def output_path(fname) -> Path:
    """`tree.nwk` -> `tree.out.nwk`; `tree` -> `tree.out`."""
    path = Path(fname)
    if path.suffix:
        return path.with_name(f"{path.stem}.out{path.suffix}")
    return path.with_name(f"{path.name}.out")

def save_tree(phylo : Phylogeny, fname) -> Path:
    outfile = output_path(fname)
    with open(outfile, "w") as f:
        f.write(write_tree(phylo))
    return outfile

def parse_annotation_row(line : str):
    if "\t" not in line:
        return line, None
    taxon_id, name = line.split("\t")[:2]
    if not taxon_id.strip():
        raise InvalidAnnotationRow(f"Row '{line}' has an empty ID.")
    return taxon_id, (name.strip() or None)

def read_annotation_table(fname, replace : bool = False) -> dict:
    """
    Reads an ID<tab>Name table and returns the label each ID should
    be given: "ID Name", or just "Name" if `replace` is set. A row
    with no name maps the ID to itself. Blank lines and lines starting
    with '#' are skipped; later duplicates overwrite earlier rows.
    """
    if not os.path.exists(fname):
        raise MissingFileError(f"Annotation table {fname} does not exist.")

    names = {}
    with open(fname, "r") as f:
        for lineno, line in enumerate(f, 1):
            line = line.rstrip()
            if not line or line.startswith("#"):
                continue
            try:
                taxon_id, name = parse_annotation_row(line)
            except InvalidAnnotationRow as e:
                logger.warning(f"{fname}:{lineno}: {e} Skipping.")
                continue

            if taxon_id in names:
                logger.warning(f"ID {taxon_id} is not unique.")
            if name is None:
                names[taxon_id] = taxon_id
            elif replace:
                names[taxon_id] = name
            else:
                names[taxon_id] = f"{taxon_id} {name}"
    return names
