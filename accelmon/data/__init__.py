"""Backend bindings, ingestion pipeline and report export."""
