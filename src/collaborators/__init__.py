"""External collaborators: text extraction and document analysis."""
