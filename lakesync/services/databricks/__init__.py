"""Databricks integration: REST control plane and SQL warehouse execution.

Key entry points:
  - client.DatabricksClient         warehouses, data sources, jobs (httpx)
  - sql_client.DatabricksSQLClient  statement execution with retries
  - browse / accuweather            warehouse browsing and sample queries
"""
