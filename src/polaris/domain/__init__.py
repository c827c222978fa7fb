"""Domain layer: entity pipelines, entity operations and search."""
