"""Draft and Scene data model, and YAML frontmatter helpers."""
