"""GitRats XP and reconciliation backend."""
