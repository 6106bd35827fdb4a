"""Translation pipeline: language resolution, caching, dispatch and providers.

Submodules are imported explicitly by callers; this package keeps no
import-time side effects so ``chat_relay.config`` can depend on
``chat_relay.translation.errors`` without a cycle.
"""
