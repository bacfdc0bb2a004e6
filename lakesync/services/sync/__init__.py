"""Databricks -> S3 -> Snowflake sync pipeline.

Key entry points:
  - orchestrator.SyncOrchestrator.start()  validate, create run, spawn pipeline
  - run_store.run_store                   in-memory run registry
"""
