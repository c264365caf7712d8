"""HTTP routes of the bridge API."""
