"""Conversation components: intent resolution, sessions and the turn orchestrator."""
