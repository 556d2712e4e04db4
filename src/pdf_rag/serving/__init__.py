"""
Serving — FastAPI application exposing the ingestion pipeline.

Routes translate request bodies into orchestrator calls and render
:class:`~pdf_rag.errors.PipelineError` as structured JSON errors.
"""
