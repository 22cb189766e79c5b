"""verification/ -- Contact verification core.

Code generation and hashing, the verification record store, send-attempt
rate limiting, the provider abstraction (self-managed or delegated), and the
gating policy that sensitive actions (registration, password reset) consult.

Layer rule: verification/ imports only stdlib, third-party libraries, and
core/. It does NOT import from api/ or auth/. The gate receives the user
registry it needs as a constructor argument.
"""
