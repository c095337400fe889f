"""Document ingestion and maintenance reference-status core."""
