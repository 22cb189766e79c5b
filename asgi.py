"""
asgi.py -- ASGI entry point for the user authentication service.

Run with:  uvicorn asgi:app --reload

Host applications that embed the service import `app` from here and attach
their delivery handlers and hooks before the server starts, e.g.:

    from asgi import app, events
    events.subscribe(VerificationCodeGenerated, send_code_email)
"""

from api.main import app

# The dispatcher the lifespan wires into the gate.
events = app.state.events
hooks = app.state.hooks
