"""Operational command-line scripts for the drift monitor."""
