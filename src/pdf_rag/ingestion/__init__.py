"""
Ingestion — download, parsing, chunking, embedding and upserting of PDFs.

This module is responsible for the ETL-like pipeline that turns a PDF in
blob storage into embedded chunks stored in the document's own namespace
of the vector index.  :class:`~pdf_rag.ingestion.orchestrator.IngestionOrchestrator`
is the entry point; the other modules are its stages.
"""
