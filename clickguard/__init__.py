"""clickguard - click traffic integrity scoring and analytics rollups."""
