"""Tree engine: status cascade, layout and relationship graph.

Public API::

    from roadmap.tree import operations
    nodes = operations.set_node_status(conn, node_id, "completed")
"""

from roadmap.tree import cascade, graph, layout, operations

__all__ = ["cascade", "graph", "layout", "operations"]
