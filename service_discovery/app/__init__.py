"""Directory discovery service package.

Layout:
- ``api``: HTTP endpoint for conversational discovery turns.
- ``conversation``: intent resolution, sessions and turn orchestration.
- ``handlers``: one capability handler per intent.
- ``hybrid``: semantic + text fallback search resolution.
- ``retrievers``: query cache and embedding client.
- ``ranking``: hit normalization, ranking and result formatting.
- ``channels``: channel-specific rendering (WhatsApp templates).
- ``runtime``: service-local metrics helpers.
"""
