"""notify/ -- Outbound email for account lifecycle events.

Layer rule: notify/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/. auth/service.py hands it plain values
(recipient, display name, link), never domain objects.
"""
