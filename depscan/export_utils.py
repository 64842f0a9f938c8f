#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ****************************************************************************************************************************************************
# * BSD 3-Clause License
# *
# * Copyright (c) 2025, Mana Battery
# * All rights reserved.
# *
# * Redistribution and use in source and binary forms, with or without modification, are permitted provided that the following conditions are met:
# *
# * 1. Redistributions of source code must retain the above copyright notice, this list of conditions and the following disclaimer.
# * 2. Redistributions in binary form must reproduce the above copyright notice, this list of conditions and the following disclaimer in the
# *    documentation and/or other materials provided with the distribution.
# * 3. Neither the name of the copyright holder nor the names of its contributors may be used to endorse or promote products derived from this
# *    software without specific prior written permission.
# *
# * THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO,
# * THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR
# * CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO,
# * PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF
# * LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE,
# * EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
# ****************************************************************************************************************************************************
"""Export utilities for writing include and module graphs to various file formats."""

import os
import json
import logging
from typing import Any, Iterable

import networkx as nx
from networkx.readwrite import json_graph

from depscan.color_utils import print_error, print_success
from depscan.consumers import ModuleDeps
from depscan.include_tree import IncludeTreeRoot, load_node, walk_include_tree
from depscan.module_graph import build_module_graph, compute_module_layers
from depscan.object_store import ContentRef, ObjectStore

logger = logging.getLogger(__name__)


def build_include_graph(store: ObjectStore, root_ref: ContentRef) -> "nx.DiGraph[Any]":
    """Build a directed include graph (includer -> included) from an include tree root.

    Node attributes:
        - label: File basename
        - path: File name as recorded in the tree
        - characteristic: user, system or external
        - contents: Content reference of the file
        - has_include_checks: Number of __has_include probes evaluated in the file

    Edge attributes:
        - offset: Offset of the first inclusion directive for that pair
        - count: Number of times the includer entered the file
    """
    root = load_node(store, root_ref, IncludeTreeRoot)
    G: nx.DiGraph[str] = nx.DiGraph()
    parents = []
    for depth, offset, tree, include_file in walk_include_tree(store, root.main):
        node = include_file.filename
        if not G.has_node(node):
            G.add_node(
                node,
                label=os.path.basename(node),
                path=node,
                characteristic=tree.characteristic.name.lower(),
                contents=str(include_file.contents),
                has_include_checks=len(tree.has_include_checks),
            )
        del parents[depth:]
        if parents:
            includer = parents[-1]
            if G.has_edge(includer, node):
                G.edges[includer, node]["count"] += 1
            else:
                G.add_edge(includer, node, offset=offset, count=1)
        parents.append(node)
    logger.debug("Include graph has %s files and %s edges", G.number_of_nodes(), G.number_of_edges())
    return G


def build_module_export_graph(modules: Iterable[ModuleDeps]) -> "nx.DiGraph[Any]":
    """Module graph with string node names, suitable for every export format.

    Nodes carry the module name, context hash and layer (0 = imports nothing).

    Raises:
        ModuleGraphError: If the modules import each other in a cycle
    """
    modules = list(modules)
    G = build_module_graph(modules)
    layers = compute_module_layers(modules)
    mapping = {node: f"{node.module_name}-{node.context_hash}" for node in G.nodes()}
    H = nx.relabel_nodes(G, mapping)
    for original, name in mapping.items():
        H.nodes[name]["label"] = original.module_name
        H.nodes[name]["context_hash"] = original.context_hash
        H.nodes[name]["layer"] = layers[original.module_name]
    return H


def export_graph(filename: str, graph: "nx.DiGraph[Any]") -> bool:
    """Export a graph; the extension picks the format.

    Supports: GraphML (.graphml), DOT (.dot), GEXF (.gexf), JSON (.json)

    Returns:
        True if the file was written
    """
    try:
        ext = os.path.splitext(filename)[1].lower()
        if ext == ".graphml":
            nx.write_graphml(graph, filename)
        elif ext == ".dot":
            nx.drawing.nx_pydot.write_dot(graph, filename)
        elif ext == ".gexf":
            nx.write_gexf(graph, filename)
        elif ext == ".json":
            data = json_graph.node_link_data(graph)
            with open(filename, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        else:
            logger.warning("Unsupported graph format: %s. Defaulting to GraphML.", ext)
            filename = filename + ".graphml"
            nx.write_graphml(graph, filename)

        logger.info("Exported graph to %s", filename)
        print_success(f"Exported graph to {filename}")
        return True
    except ImportError:
        logger.error("Missing dependency for graph export")
        print_error("Missing dependency for graph export. Install pydot for DOT format.")
    except (OSError, nx.NetworkXError) as e:
        logger.error("Failed to export graph: %s", e)
        print_error(f"Failed to export graph: {e}")
    return False
