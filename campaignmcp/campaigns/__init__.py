"""Campaign data provider."""
