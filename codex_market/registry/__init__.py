"""Git access for marketplaces and remote plugins."""
