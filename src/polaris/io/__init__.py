"""I/O adapters: search index and object storage."""
