# Streaming chat-completion pipeline
#
# This package holds everything between the HTTP layer and the inference
# engine. None of it imports FastAPI.
#
# Key components:
#   - config.py      Environment-backed settings
#   - types.py       Sessions, cache entries, generation params, stream events
#   - cache_key.py   Content-addressed cache keys
#   - store.py       Atomic JSON collections on disk
#   - sessions.py    Append-only session transcripts
#   - cache.py       Cache-aside lookup / population
#   - inference.py   Streaming client for the inference engine
#   - governor.py    Per-identity admission control
#   - metrics.py     Process-wide counters
#   - pipeline.py    Per-request lifecycle tying the above together
