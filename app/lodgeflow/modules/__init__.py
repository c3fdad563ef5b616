"""
Feature modules live under this package.

Each module owns its models, service functions and blueprint; platform primitives
(auth, RBAC, audit, storage, mail, DB session) are shared from app.lodgeflow.
"""
