"""Reference resolution: placeholders to record ids.

Creation map, resolution cache and live search, tried in that order.
"""
