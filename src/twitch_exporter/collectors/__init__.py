"""Scrape orchestration and Prometheus exposition."""
