"""replica/ -- Best-effort profile sync to the secondary read store (Convex).

Layer rule: replica/ imports only stdlib, third-party libraries and auth.models.
Nothing in replica/ may affect the outcome of a primary auth operation.
"""
