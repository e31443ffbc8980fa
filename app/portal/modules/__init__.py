"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its service logic (and models/routes
where it has them), while reusing platform primitives (auth, RBAC, audit, state,
mailer, DB session).
"""
