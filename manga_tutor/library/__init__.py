"""Manga library persistence package (`store`)."""
