"""Channel-specific response rendering."""
