"""
campusgraph - college catalog resolution and relationship graph

Resolves free-text college and course names to catalog entities, builds
relationship graphs over the catalog, ranks recommendations and checks
catalog integrity.
"""

__version__ = "0.1.0"
