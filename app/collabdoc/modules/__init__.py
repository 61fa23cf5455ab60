"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its routes and services,
while reusing platform primitives (users/roles, audit, storage, DB session).
"""
