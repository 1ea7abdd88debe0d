"""audit/ -- Append-only activity trail.

Layer rule: audit/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/; actors are plain integer user ids.
"""
