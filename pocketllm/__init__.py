"""
PocketLLM - a caching, streaming proxy in front of a local inference engine.

The proxy accepts chat requests over HTTP, forwards cache misses to an
Ollama-compatible engine, and streams generated tokens back to the client as
server-sent events. Complete responses are cached by request content so that
repeated prompts are replayed without touching the model.

Submodules:
    - pocketllm.proxy: Cache-aside pipeline, session ledger, durable store,
      inference client, admission control and metrics

The HTTP layer lives in `apps/server` and the command-line client in
`apps/cli`; neither is imported from here.
"""

from pocketllm._version import __version__

__all__ = ["__version__"]
