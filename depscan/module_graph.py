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
"""Module dependency graph utilities using NetworkX."""

import logging
from typing import Any, Dict, Iterable, List

import networkx as nx

from depscan.constants import ModuleGraphError
from depscan.consumers import ModuleDeps, ModuleID

logger = logging.getLogger(__name__)


def build_module_graph(modules: Iterable[ModuleDeps]) -> "nx.DiGraph[Any]":
    """Build a directed graph with an edge from each module to every module it imports.

    Imported modules that are not in the input still become nodes.
    """
    G: nx.DiGraph[ModuleID] = nx.DiGraph()
    for md in modules:
        G.add_node(md.id, is_system=md.is_system, module_map=md.clang_module_map_file, files=len(md.file_deps))
        for dep in md.clang_module_deps:
            G.add_edge(md.id, dep)
    return G


def topological_module_order(modules: Iterable[ModuleDeps]) -> List[ModuleDeps]:
    """Order modules so every module comes after the modules it imports.

    Modules of the same generation are sorted by (name, context hash), so the
    result does not depend on the order in which modules were discovered.

    Raises:
        ModuleGraphError: If module imports form a cycle
    """
    by_id: Dict[ModuleID, ModuleDeps] = {}
    for md in modules:
        by_id.setdefault(md.id, md)
    G = build_module_graph(by_id.values())

    try:
        # Reverse so that imported modules form the first generations
        generations = list(nx.topological_generations(G.reverse(copy=False)))
    except nx.NetworkXUnfeasible as e:
        cycle = nx.find_cycle(G)
        chain = " -> ".join(edge[0].module_name for edge in cycle)
        raise ModuleGraphError(f"Cyclic module dependencies: {chain}") from e

    ordered = []
    for generation in generations:
        for module_id in sorted(generation):
            if module_id in by_id:
                ordered.append(by_id[module_id])
    logger.debug("Ordered %s modules in %s generations", len(ordered), len(generations))
    return ordered


def compute_module_layers(modules: Iterable[ModuleDeps]) -> Dict[str, int]:
    """Map module name to its layer (0 = imports nothing)."""
    layers = {}
    G = build_module_graph(modules)
    try:
        for layer_num, layer_nodes in enumerate(nx.topological_generations(G.reverse(copy=False))):
            for node in layer_nodes:
                layers[node.module_name] = layer_num
    except nx.NetworkXUnfeasible as e:
        raise ModuleGraphError(f"Cyclic module dependencies: {e}") from e
    return layers
