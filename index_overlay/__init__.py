"""Render vegetation-index overlays clipped to a field polygon on a satellite basemap."""
