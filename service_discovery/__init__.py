"""Directory discovery service."""
