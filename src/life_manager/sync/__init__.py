"""
Bidirectional sync engine.

Components:
- errors: error classification and exception types
- retry: bounded exponential backoff executor
- sync_store: SQLite persistence (metadata, retry queue, audit log)
- retry_queue: durable deferred retries
- importer / exporter: provider -> local and local -> provider pipelines
- status: connection and queue reporting
- engine: per-user facade
- worker: periodic queue drain loop
"""
