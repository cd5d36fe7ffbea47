"""auth/ -- Authentication and session-lifecycle package for EventDesk.

Layer rule: auth/ imports only stdlib + third-party libraries, core/, and
replica.sync (the orchestrator dispatches profile sync). It does NOT import
from api/. api/ imports from auth/, not the other way around.
"""
