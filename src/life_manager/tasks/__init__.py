"""
Local tasks subsystem.

Components:
- task_models: dataclasses/enums for tasks and domains
- task_store: SQLite persistence
- task_api: local mutations that trigger export, daily start flow
"""
