"""
Catalog module: streams (the category vocabulary) and the content items tagged with them.
"""
