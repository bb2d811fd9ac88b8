"""core/ -- Configuration and constants shared by every layer."""
