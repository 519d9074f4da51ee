import unittest

import phylogeny

from phylogeny import parse_newick, write_newick, MalformedTreeError

def labels(phylo, nodes):
    return [phylo.tree.nodes[n]["label"] for n in nodes]

class ParseNewickTest(unittest.TestCase):
    def test_structure(self):
        phylo = parse_newick("(A:1,(B:0.5,C:0.25)90:1)100;")
        self.assertEqual(phylo.root, 0)
        self.assertEqual(labels(phylo, phylo.leaves()), ["A", "B", "C"])
        self.assertEqual(labels(phylo, phylo.internal_nodes()), ["100", "90"])

        clade = phylo.internal_nodes()[1]
        self.assertEqual(phylo.tree.nodes[clade]["branch_length"], 1.0)
        self.assertEqual(phylo.parent(clade), phylo.root)
        self.assertIsNone(phylo.tree.nodes[phylo.root]["branch_length"])

    def test_child_order_is_preserved(self):
        phylo = parse_newick("(Z,Y,(X,W)V,U);")
        children = phylo.children(phylo.root)
        self.assertEqual(labels(phylo, children), ["Z", "Y", "V", "U"])

    def test_annotations_are_opaque(self):
        phylo = parse_newick("(A[&a=1,b=(2:3)],B)[&prob(percent)=\"90\",x=[1,2]]:0.1[&rate=2];")
        root = phylo.tree.nodes[phylo.root]
        self.assertEqual(root["annotation"], '&prob(percent)="90",x=[1,2]')
        self.assertEqual(root["length_annotation"], "&rate=2")
        self.assertEqual(root["length_text"], "0.1")
        self.assertEqual(labels(phylo, phylo.leaves()), ["A", "B"])
        self.assertEqual(phylo.tree.nodes[phylo.leaves()[0]]["annotation"], "&a=1,b=(2:3)")

    def test_quoted_and_spaced_labels(self):
        phylo = parse_newick("('Homo sapiens':1,A Alpha:2,'it''s':3);")
        self.assertEqual(labels(phylo, phylo.leaves()), ["'Homo sapiens'", "A Alpha", "'it''s'"])

    def test_terminator_is_optional(self):
        self.assertEqual(write_newick(parse_newick("(A,B)")), "(A,B);")
        self.assertEqual(write_newick(parse_newick("  (A,B) ; \n")), "(A,B);")

    def test_negative_and_exponent_lengths(self):
        phylo = parse_newick("(A:-0.5,B:1e-3);")
        a, b = phylo.leaves()
        self.assertEqual(phylo.tree.nodes[a]["branch_length"], -0.5)
        self.assertAlmostEqual(phylo.tree.nodes[b]["branch_length"], 0.001)

    def test_malformed(self):
        for newick in ["", "(A,B", "(A,B));", "(A,(B,C);", "(A:x,B);", "(A,);", "(A[&x,B);", "(A,B)C(D);"]:
            with self.assertRaises(MalformedTreeError, msg=newick):
                parse_newick(newick)

    def test_malformed_is_value_error(self):
        with self.assertRaises(ValueError):
            parse_newick("(A,B")

class WriteNewickTest(unittest.TestCase):
    def test_round_trip(self):
        trees = [
            "(A:1,(B:1,C:1)90:1)100;",
            "((A,B)0.95,(C,D)0.87,E);",
            "(A:0.100,B:1.50E-2,(C:-0.0,D:3)[&posterior=0.9]:2.0);",
            "(1[&rate=1]:0.1[&len=2],'x y':2)ROOT:0.0;",
            "A;",
        ]
        for newick in trees:
            self.assertEqual(write_newick(parse_newick(newick)), newick)

    def test_reparse_is_structurally_equal(self):
        first = parse_newick("(A:1,(B:2,(C:3,D:4)75:5)60:6,E:7);")
        second = parse_newick(write_newick(first))
        self.assertEqual(labels(first, first.nodes()), labels(second, second.nodes()))
        self.assertEqual(list(first.tree.edges()), list(second.tree.edges()))
        for n in first.nodes():
            self.assertEqual(first.tree.nodes[n]["branch_length"], second.tree.nodes[n]["branch_length"])

    def test_changed_lengths_use_fifteen_digits(self):
        phylo = parse_newick("(A:1,B:0.1);")
        a, b = phylo.leaves()
        phylogeny.set_branch_length(phylo.tree, a, 2.0)
        phylogeny.set_branch_length(phylo.tree, b, 0.1 + 0.2)
        self.assertEqual(write_newick(phylo), "(A:2,B:0.3);")

def caterpillar(num_taxa):
    """((((T0:1,T1:1)1:1,T2:1)2:1,T3:1)3:1 ...);"""
    closes = "".join(f",T{i}:1){i}:1" for i in range(1, num_taxa))
    return "(" * (num_taxa - 1) + "T0:1" + closes + ";"

class DeepTreeTest(unittest.TestCase):
    def test_caterpillar_round_trip(self):
        newick = caterpillar(5000)
        phylo = parse_newick(newick)
        self.assertEqual(len(phylo.leaves()), 5000)
        self.assertEqual(len(phylo.internal_nodes()), 4999)
        self.assertEqual(phylo.tree.nodes[phylo.root]["label"], "4999")
        self.assertEqual(write_newick(phylo), newick)

    def test_unbalanced_caterpillar(self):
        with self.assertRaises(MalformedTreeError):
            parse_newick(caterpillar(5000)[1:])
        with self.assertRaises(MalformedTreeError):
            parse_newick("(" + caterpillar(5000))

class PhylogenyTest(unittest.TestCase):
    def test_copy_is_independent(self):
        phylo = parse_newick("(A,(B,C)90);")
        clone = phylo.copy()
        clone.tree.nodes[clone.leaves()[0]]["label"] = "Z"
        clone.replace_children(clone.root, [1])
        self.assertEqual(write_newick(phylo), "(A,(B,C)90);")
        self.assertEqual(write_newick(clone), "(Z);")

    def test_support_value(self):
        phylo = parse_newick("((A,B)87.5,(C,D)abc,(E,F)inf);")
        values = [phylogeny.support_value(phylo.tree, n) for n in phylo.internal_nodes()]
        self.assertEqual(values, [None, 87.5, None, None])

if __name__ == '__main__':
    unittest.main()
