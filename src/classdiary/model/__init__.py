"""Class diary data model, statistics and file formats."""
