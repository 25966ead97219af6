"""Command-line interface for wgetcache."""
