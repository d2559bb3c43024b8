"""Command-line pipeline for stratified multiple-systems estimation."""
