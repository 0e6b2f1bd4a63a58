"""Cross-cutting infrastructure: logging and store connections."""
