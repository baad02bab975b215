"""
Services Layer

Waitlist business logic:
- Accept domain inputs (IDs, sessions, policy)
- Return domain outputs (models, result objects)
- Do NOT depend on HTTP request/response objects
- Do NOT raise to callers for expected failures; return a result instead
"""
