"""Web front end for PermaServe."""
