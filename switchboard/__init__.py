"""
Switchboard — Worker subprocess orchestration for a primary agent.

A primary conversational agent rarely does all the work itself. Switchboard
lets it delegate: it spawns short-lived worker processes (invocations of a
command-line agent binary), streams their output as it arrives, remembers
each worker's conversation between runs, and hands every worker only the
credentials its model needs.

Layers (bottom to top):
    1. Personas (markdown definitions of worker roles)
    2. Environment builder (credential-scoped worker environments)
    3. Worker runner (subprocess lifecycle and event streaming)
    4. Topologies (dispatcher, pipeline, pool)
    5. Orchestrator (owns definitions, sessions and topologies)
"""

__version__ = "0.1.0"


class SwitchboardError(Exception):
    """Base class for errors raised by switchboard itself."""
