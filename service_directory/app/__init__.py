"""
Directory Service package.

Serves Users and Groups over HTTP and gates every operation with a
relationship-aware authorization check before it touches storage:

- app.main: API surface for users, groups and health.
- app.authz: Principal model, fact encoder, policy store, request
  synthesizer, decision engine and the AccessControl facade.
- app.service: User/group operations that act only on Allow.
- app.persistence: PostgreSQL storage, also the membership fact source.

Guidelines:
- Never cache decisions; every check reflects facts at call time.
- Membership facts come from storage, never from request payloads.
"""
