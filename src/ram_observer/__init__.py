"""Live process-tree memory observer."""
