"""authority/ -- Credential authority core: store, sessions, policy, administration.

Layer rule: authority/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration values are passed in by
the caller (api/main.py lifespan, main.py CLI) at construction time.
api/ imports from authority/, not the other way around.
"""
