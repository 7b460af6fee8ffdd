"""auth/ -- Identity and session lifecycle package for Canvas Auth.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config.TokenConfig in auth/tokens.py.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
