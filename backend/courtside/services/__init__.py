"""
Services Layer

Pure tournament-engine services that:
- Accept domain inputs (teams, matches, members, court slots)
- Return domain outputs (new records, court assignments, reports)
- Do NOT perform I/O
- Do NOT mutate their inputs; the controller owns the only mutable state
"""
