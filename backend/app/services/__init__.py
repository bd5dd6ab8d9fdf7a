"""
Services Layer

Lifecycle logic shared by the scheduled jobs and the HTTP routes:
- Accept domain inputs (store, clock, settings)
- Return plain summaries and results
- Do NOT depend on HTTP request/response objects
- Only write tournament fields through TournamentStore's guarded methods
"""
