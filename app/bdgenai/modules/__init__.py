"""
Feature modules live under this package.

Each module owns its models, service functions and JSON routes (api.py), and reuses
the platform primitives (auth, RBAC, audit, storage, KV, DB session).
"""
