"""Origin server exposing a media directory tree over HTTP."""
