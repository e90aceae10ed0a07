"""Harvester — bounded crawl-and-extract pipeline for paginated listing sites."""
