"""PermaServe: serve PermaStore pages from an Antelope blockchain."""
