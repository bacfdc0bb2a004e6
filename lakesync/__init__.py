"""lakesync: Databricks SQL warehouse API and Databricks-to-Snowflake sync service."""
