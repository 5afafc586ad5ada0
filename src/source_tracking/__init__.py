"""Source tracking for file-based metadata projects.

Reconciles local working-tree changes with remote metadata revisions and
reports the components that changed on both sides.
"""

__version__ = "0.3.0"
