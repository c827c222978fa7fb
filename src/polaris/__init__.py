"""
Polaris - entity management platform.

Declarative entity pipelines compiled from index mappings and rule documents,
keyset pagination over an Elasticsearch index, and object storage access.
"""

__version__ = "0.1.0"
