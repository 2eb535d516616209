"""Chat client core: streaming completions, artifact extraction and persisted state."""
