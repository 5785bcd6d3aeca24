"""CLI tools for docrag.

- ``python -m docrag.cli`` or ``python -m docrag.cli.ingest`` -- upload,
  list, poll, delete and search datasets in the knowledge base, and check
  the embedding provider.

The CLI builds its own application stack per invocation through
``docrag.main.open_application``; it runs as a one-shot script, not a
long-lived server.
"""
