"""auth/ -- Accounts, passwords, access tokens and social sign-in.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or verification/.
api/ imports from auth/, not the other way around.
"""
