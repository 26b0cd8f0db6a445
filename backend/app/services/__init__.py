"""
Services Layer

Bracket lifecycle logic shared by the routes:
- bracket_builder: seeded draws per category
- match_runtime / advancement_service: scoring and winner propagation
- result_resolver: placements and the completion cascade
- statistics / broadcast: read models and outbound events

Services accept a Session plus ids and never touch HTTP request/response objects.
"""
