"""Page-based B+tree primary index with a page store, linked leaves and ordered cursors."""

__version__ = "0.1.0"
__all__ = ["common", "leaf_node", "internal_node", "index", "cursor"]